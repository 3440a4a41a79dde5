"""API views for the audience CRM backend."""
from __future__ import annotations

import logging

from django.apps import apps
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from .ai_engine import MessageGeneratorError
from .models import Campaign, Customer, Message, Order, Segment
from .serializers import (
    CampaignSendResultSerializer,
    CampaignSerializer,
    CurrentUserSerializer,
    CustomerSerializer,
    EmailTokenObtainPairSerializer,
    GenerateMessageSerializer,
    MessageSerializer,
    MessageUpdateSerializer,
    OrderSerializer,
    OrderStatusSerializer,
    RuleSetSerializer,
    SegmentSerializer,
)
from .services import (
    AudienceResolver,
    CampaignLockedError,
    CampaignSendError,
    CampaignSendService,
    refresh_total_spent,
)
from .throttles import BurstRateThrottle, CampaignSendRateThrottle

LOGGER = logging.getLogger(__name__)

RECENT_MESSAGES_LIMIT = 50


def audience_payload(audience, request) -> dict:
    return {
        'customers': CustomerSerializer(audience.customers, many=True, context={'request': request}).data,
        'statistics': audience.statistics,
    }


class LoginView(TokenObtainPairView):
    permission_classes = [AllowAny]
    serializer_class = EmailTokenObtainPairSerializer


class CurrentUserView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)


class CustomerListCreateView(generics.ListCreateAPIView):
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated]
    queryset = Customer.objects.all()
    results_key = 'customers'

    def list(self, request, *args, **kwargs):
        page = self.paginate_queryset(self.get_queryset())
        customers = refresh_total_spent(page)
        serializer = self.get_serializer(customers, many=True)
        return self.get_paginated_response(serializer.data)


class CustomerDetailView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated]
    queryset = Customer.objects.all()
    lookup_url_kwarg = 'customer_id'


class OrderListCreateView(generics.ListCreateAPIView):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    results_key = 'orders'

    def get_queryset(self):
        return Order.objects.select_related('customer')

    def perform_create(self, serializer):
        order = serializer.save()
        refresh_total_spent([order.customer])


class CustomerOrderListView(generics.ListAPIView):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None

    def get_queryset(self):
        return Order.objects.select_related('customer').filter(customer_id=self.kwargs['customer_id'])


class OrderDetailView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    lookup_url_kwarg = 'order_id'

    def get_queryset(self):
        return Order.objects.select_related('customer')

    def perform_update(self, serializer):
        previous = serializer.instance.customer
        order = serializer.save()
        refresh_total_spent({previous.id: previous, order.customer.id: order.customer}.values())

    def perform_destroy(self, instance):
        customer = instance.customer
        instance.delete()
        refresh_total_spent([customer])


class OrderStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, order_id):
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = get_object_or_404(Order.objects.select_related('customer'), id=order_id)
        order.status = serializer.validated_data['status']
        order.save(update_fields=('status', 'updated_at'))
        refresh_total_spent([order.customer])
        return Response(OrderSerializer(order).data)


class SegmentListCreateView(generics.ListCreateAPIView):
    serializer_class = SegmentSerializer
    permission_classes = [IsAuthenticated]
    queryset = Segment.objects.all()
    results_key = 'segments'

    def perform_create(self, serializer):
        data = serializer.validated_data
        count = AudienceResolver().count(data.get('rules', []), data.get('rule_operator', Segment.RuleOperator.AND))
        serializer.save(created_by=self.request.user, customer_count=count)


class SegmentDetailView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = SegmentSerializer
    permission_classes = [IsAuthenticated]
    queryset = Segment.objects.all()
    lookup_url_kwarg = 'segment_id'

    def perform_update(self, serializer):
        segment = serializer.save()
        segment.customer_count = len(AudienceResolver().resolve_segment(segment))
        segment.save(update_fields=('customer_count', 'updated_at'))


class SegmentPreviewView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = RuleSetSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        count = AudienceResolver().count(
            serializer.validated_data['rules'],
            serializer.validated_data['rule_operator'],
        )
        return Response({'count': count})


class SegmentCustomersView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, segment_id):
        segment = get_object_or_404(Segment, id=segment_id)
        audience = AudienceResolver().resolve_segment(segment)
        return Response(audience_payload(audience, request))


class CampaignListCreateView(generics.ListCreateAPIView):
    serializer_class = CampaignSerializer
    permission_classes = [IsAuthenticated]
    results_key = 'campaigns'

    def get_queryset(self):
        return Campaign.objects.select_related('segment')


class CampaignDetailView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = CampaignSerializer
    permission_classes = [IsAuthenticated]
    lookup_url_kwarg = 'campaign_id'

    def get_queryset(self):
        return Campaign.objects.select_related('segment')

    def _ensure_editable(self, campaign: Campaign, action: str) -> None:
        if campaign.is_terminal:
            raise CampaignLockedError(f'Cannot {action} a campaign that has already been sent')

    def update(self, request, *args, **kwargs):
        try:
            self._ensure_editable(self.get_object(), 'update')
        except CampaignLockedError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return super().update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        try:
            self._ensure_editable(self.get_object(), 'delete')
        except CampaignLockedError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return super().destroy(request, *args, **kwargs)


class CampaignCustomersView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, campaign_id):
        campaign = get_object_or_404(Campaign.objects.select_related('segment'), id=campaign_id)
        try:
            audience = AudienceResolver().resolve_campaign(campaign)
        except CampaignSendError as exc:
            return Response({'detail': str(exc)}, status=exc.status_code)
        return Response({'status': 'success', 'data': audience_payload(audience, request)})


class CampaignSendView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [BurstRateThrottle, CampaignSendRateThrottle]

    def post(self, request, campaign_id):
        campaign = get_object_or_404(Campaign.objects.select_related('segment'), id=campaign_id)
        service = CampaignSendService(campaign=campaign, user=request.user)
        try:
            campaign = service.send()
        except CampaignSendError as exc:
            LOGGER.info('Campaign %s not sent: %s', campaign_id, exc)
            return Response({'detail': str(exc)}, status=exc.status_code)
        return Response({
            'status': 'success',
            'data': {'campaign': CampaignSendResultSerializer(campaign).data},
        })


class GenerateMessageView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = GenerateMessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        generator = apps.get_app_config('crm').message_generator
        if generator is None:
            return Response(
                {'detail': 'Message generation is not configured'},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        try:
            payload = generator.generate_message(
                objective=serializer.validated_data['objective'],
                audience=serializer.validated_data.get('audience') or None,
                tone=serializer.validated_data.get('tone') or None,
            )
        except MessageGeneratorError as exc:
            return Response({'detail': str(exc)}, status=status.HTTP_502_BAD_GATEWAY)
        return Response(payload)


class MessageListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        messages = list(Message.objects.filter(user=request.user).order_by('-timestamp')[:RECENT_MESSAGES_LIMIT])
        customers = Customer.objects.in_bulk({message.customer_id for message in messages})
        serializer = MessageSerializer(messages, many=True, context={'request': request, 'customers': customers})
        return Response(serializer.data)


class MessageDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, message_id):
        message = get_object_or_404(Message, id=message_id, user=request.user)
        serializer = MessageUpdateSerializer(message, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(MessageSerializer(message).data)


class MessageReadView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, message_id):
        message = get_object_or_404(Message, id=message_id, user=request.user)
        if not message.read:
            message.read = True
            message.save(update_fields=('read',))
        return Response(MessageSerializer(message).data)
