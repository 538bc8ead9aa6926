from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "FarmTrace ledger admin"
admin.site.site_title = "FarmTrace"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('core.urls')),
]
