# === core/views.py (thin controllers, only orchestration & HTTP) ===

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core.models import Notification, OwnershipTransfer, Participant, Product
from core.serializers import (
    # participants
    ParticipantSerializer,
    NotificationSerializer,
    # products & ledger
    ProductReadSerializer,
    ProductRegisterSerializer,
    ProductUpdateFieldsSerializer,
    ProductEventSerializer,
    OwnershipBlockSerializer,
    ChainVerificationSerializer,
    AcceptedBlockSerializer,
    # quality checks & scans
    QualityCheckSerializer,
    QualityCheckCreateSerializer,
    ScanSerializer,
    ScanCreateSerializer,
    # transfers
    TransferRequestSerializer,
    TransferActionSerializer,
    TransferReadSerializer,
)
from core.services.products import (
    get_product_by_batch_id,
    product_history,
    register_product,
    update_product_fields,
)
from core.services.inspections import (
    quality_checks_for_product,
    recent_scans,
    record_quality_check,
    record_scan,
)
from core.services.transfers import accept_transfer, reject_transfer, request_transfer
from ledger.services import get_chain, verify_chain

UUID_REGEX = r"[0-9a-fA-F-]{32,36}"


class ParticipantViewSet(mixins.CreateModelMixin,
                         mixins.UpdateModelMixin,
                         viewsets.ReadOnlyModelViewSet):
    queryset = Participant.objects.all()
    serializer_class = ParticipantSerializer
    filterset_fields = ["role", "is_active"]
    lookup_value_regex = UUID_REGEX

    @action(detail=True, methods=["get"], url_path="notifications")
    def notifications(self, request, pk=None):
        participant = self.get_object()
        qs = participant.notifications.all()
        if request.query_params.get("unread") in ("1", "true"):
            qs = qs.filter(is_read=False)
        return Response(NotificationSerializer(qs, many=True).data)


class ProductViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = Product.objects.select_related("owner").all()
    serializer_class = ProductReadSerializer
    filterset_fields = ["owner", "status", "category"]
    lookup_value_regex = UUID_REGEX

    def get_serializer_class(self):
        if getattr(self, "action", None) == "create":
            return ProductRegisterSerializer
        if getattr(self, "action", None) == "update_fields":
            return ProductUpdateFieldsSerializer
        return super().get_serializer_class()

    def create(self, request, *args, **kwargs):
        serializer = ProductRegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        product = register_product(data.pop("owner_id"), **data)
        return Response(ProductReadSerializer(product).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path=r"batch/(?P<batch_id>[^/]+)")
    def by_batch(self, request, batch_id=None):
        product = get_product_by_batch_id(batch_id)
        return Response(ProductReadSerializer(product).data)

    @action(detail=True, methods=["get"], url_path="chain")
    def chain(self, request, pk=None):
        blocks = get_chain(pk)
        return Response(OwnershipBlockSerializer(blocks, many=True).data)

    @action(detail=True, methods=["get"], url_path="verify")
    def verify(self, request, pk=None):
        result = verify_chain(pk)
        return Response(ChainVerificationSerializer(result).data)

    @action(detail=True, methods=["get"], url_path="events")
    def events(self, request, pk=None):
        return Response(ProductEventSerializer(product_history(pk), many=True).data)

    @action(detail=True, methods=["get"], url_path="quality_checks")
    def quality_checks(self, request, pk=None):
        return Response(QualityCheckSerializer(quality_checks_for_product(pk), many=True).data)

    @action(detail=True, methods=["post"], url_path="update_fields")
    def update_fields(self, request, pk=None):
        serializer = ProductUpdateFieldsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product = update_product_fields(
            pk,
            serializer.validated_data["acting_user_id"],
            serializer.validated_data["changes"],
        )
        return Response(ProductReadSerializer(product).data)


class TransferViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = (
        OwnershipTransfer.objects
        .select_related("product", "from_user", "to_user", "block")
        .all()
    )
    serializer_class = TransferReadSerializer
    filterset_fields = ["status", "product", "from_user", "to_user"]

    def get_serializer_class(self):
        action_name = getattr(self, "action", None)
        if action_name == "create_request":
            return TransferRequestSerializer
        if action_name in ("accept", "reject"):
            return TransferActionSerializer
        return super().get_serializer_class()

    @action(detail=False, methods=["post"], url_path="request")
    def create_request(self, request):
        serializer = TransferRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        transfer = request_transfer(
            product_id=serializer.validated_data["product_id"],
            from_user_id=serializer.validated_data["from_user_id"],
            to_user_id=serializer.validated_data["to_user_id"],
            transfer_type=serializer.validated_data["transfer_type"],
            notes=serializer.validated_data.get("notes", ""),
        )
        return Response(
            {"transfer_id": transfer.id, "status": transfer.status},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        serializer = TransferActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        block = accept_transfer(pk, serializer.validated_data["acting_user_id"])
        return Response(AcceptedBlockSerializer(block).data)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        serializer = TransferActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        transfer = reject_transfer(pk, serializer.validated_data["acting_user_id"])
        return Response({"status": transfer.status})


class NotificationViewSet(viewsets.GenericViewSet):
    queryset = Notification.objects.all()
    serializer_class = NotificationSerializer

    @action(detail=True, methods=["post"], url_path="read")
    def mark_read(self, request, pk=None):
        notification = self.get_object()
        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=["is_read"])
        return Response(NotificationSerializer(notification).data)


class QualityCheckViewSet(viewsets.GenericViewSet):
    serializer_class = QualityCheckCreateSerializer

    def create(self, request):
        serializer = QualityCheckCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        check = record_quality_check(**serializer.validated_data)
        return Response(QualityCheckSerializer(check).data, status=status.HTTP_201_CREATED)


class ScanViewSet(viewsets.GenericViewSet):
    serializer_class = ScanCreateSerializer

    def create(self, request):
        serializer = ScanCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        scan = record_scan(
            product_id=data["product_id"],
            participant_id=data.get("participant_id"),
            location=data.get("location", ""),
            coordinates=dict(data["coordinates"]) if data.get("coordinates") else None,
        )
        return Response(ScanSerializer(scan).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="recent")
    def recent(self, request):
        scans = recent_scans(
            participant_id=request.query_params.get("participant_id"),
            limit=request.query_params.get("limit"),
        )
        return Response(ScanSerializer(scans, many=True).data)
