"""DRF serializers for the audience CRM backend."""
from __future__ import annotations

from typing import Any

import phonenumbers
from django.conf import settings
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from . import rules
from .models import Campaign, Customer, Message, Order, Segment
from .services import generate_order_number, order_total


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Customize token payload to include the operator name."""

    @classmethod
    def get_token(cls, user):  # type: ignore[override]
        token = super().get_token(user)
        token['name'] = user.name
        return token

    def validate(self, attrs):  # type: ignore[override]
        data = super().validate(attrs)
        data['user'] = {
            '_id': str(self.user.id),
            'name': self.user.name,
            'email': self.user.email,
        }
        return data


class CurrentUserSerializer(serializers.Serializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    name = serializers.CharField(read_only=True)
    email = serializers.EmailField(read_only=True)


class CustomerSummarySerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)

    class Meta:
        model = Customer
        fields = ('_id', 'name', 'email')


class CustomerSerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    totalSpent = serializers.FloatField(source='total_spent', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Customer
        fields = ('_id', 'name', 'email', 'phone', 'address', 'totalSpent', 'visits', 'createdAt', 'updatedAt')
        extra_kwargs = {
            'email': {'validators': []},
            'phone': {'required': False},
            'address': {'required': False},
            'visits': {'required': False},
        }

    def validate_email(self, value: str) -> str:
        email = value.strip().lower()
        existing = Customer.objects.filter(email__iexact=email)
        if self.instance is not None:
            existing = existing.exclude(id=self.instance.id)
        if existing.exists():
            raise serializers.ValidationError('Customer with this email already exists')
        return email

    def validate_phone(self, value: str) -> str:
        if not value:
            return value
        region = getattr(settings, 'PHONE_DEFAULT_REGION', None)
        try:
            parsed = phonenumbers.parse(value, region)
        except phonenumbers.NumberParseException as exc:
            raise serializers.ValidationError('Invalid phone number') from exc
        if not phonenumbers.is_valid_number(parsed):
            raise serializers.ValidationError('Invalid phone number')
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    def validate_address(self, value: Any) -> dict:
        if value in (None, ''):
            return {}
        if not isinstance(value, dict):
            raise serializers.ValidationError('Address must be an object')
        return value


class OrderItemSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    quantity = serializers.IntegerField(min_value=1)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        value['name'] = value['name'].strip()
        value['price'] = float(value['price'])
        return value


class ShippingAddressSerializer(serializers.Serializer):
    street = serializers.CharField()
    city = serializers.CharField()
    state = serializers.CharField()
    zipCode = serializers.CharField()
    country = serializers.CharField()


class OrderSerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    customerId = serializers.PrimaryKeyRelatedField(source='customer', queryset=Customer.objects.all())
    customer = CustomerSummarySerializer(read_only=True)
    orderNumber = serializers.CharField(source='order_number', read_only=True)
    items = OrderItemSerializer(many=True, allow_empty=False)
    totalAmount = serializers.FloatField(source='total_amount', read_only=True)
    shippingAddress = ShippingAddressSerializer(source='shipping_address')
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Order
        fields = (
            '_id',
            'customerId',
            'customer',
            'orderNumber',
            'items',
            'totalAmount',
            'status',
            'shippingAddress',
            'createdAt',
            'updatedAt',
        )
        extra_kwargs = {'status': {'required': False}}

    def validate(self, attrs):
        if 'items' in attrs:
            attrs['total_amount'] = order_total(attrs['items'])
        return attrs

    def _plain(self, validated_data: dict[str, Any]) -> dict[str, Any]:
        if 'items' in validated_data:
            validated_data['items'] = [dict(item) for item in validated_data['items']]
        if 'shipping_address' in validated_data:
            validated_data['shipping_address'] = dict(validated_data['shipping_address'])
        return validated_data

    def create(self, validated_data: dict[str, Any]) -> Order:
        return Order.objects.create(order_number=generate_order_number(), **self._plain(validated_data))

    def update(self, instance: Order, validated_data: dict[str, Any]) -> Order:
        for attr, value in self._plain(validated_data).items():
            setattr(instance, attr, value)
        instance.save()
        return instance


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)


class SegmentRuleSerializer(serializers.Serializer):
    field = serializers.ChoiceField(choices=rules.SEGMENT_FIELDS)
    operator = serializers.ChoiceField(choices=rules.OPERATORS)
    value = serializers.JSONField()

    def validate(self, attrs):
        value = attrs['value']
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise serializers.ValidationError({'value': 'Rule value must be a string or a number'})
        if attrs['operator'] in (rules.GREATER_THAN, rules.LESS_THAN) and rules.to_number(value) is None:
            raise serializers.ValidationError({'value': 'Comparison rules need a numeric value'})
        return attrs


class RuleSetSerializer(serializers.Serializer):
    rules = SegmentRuleSerializer(many=True)
    ruleOperator = serializers.ChoiceField(
        source='rule_operator',
        choices=Segment.RuleOperator.choices,
        default=Segment.RuleOperator.AND,
    )


class SegmentSerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    rules = serializers.ListField(child=SegmentRuleSerializer(), required=False)
    ruleOperator = serializers.ChoiceField(
        source='rule_operator',
        choices=Segment.RuleOperator.choices,
        required=False,
    )
    customerCount = serializers.IntegerField(source='customer_count', read_only=True)
    createdBy = serializers.UUIDField(source='created_by_id', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Segment
        fields = (
            '_id',
            'name',
            'description',
            'rules',
            'ruleOperator',
            'customerCount',
            'createdBy',
            'createdAt',
            'updatedAt',
        )
        extra_kwargs = {'description': {'required': False}}


class CampaignSerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    segmentId = serializers.PrimaryKeyRelatedField(
        source='segment',
        queryset=Segment.objects.all(),
        required=False,
        allow_null=True,
    )
    customers = serializers.ListField(child=serializers.UUIDField(), source='customer_ids', required=False)
    scheduledFor = serializers.DateTimeField(source='scheduled_for', required=False, allow_null=True)
    sentAt = serializers.DateTimeField(source='sent_at', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Campaign
        fields = (
            '_id',
            'name',
            'segmentId',
            'message',
            'customers',
            'status',
            'scheduledFor',
            'sentAt',
            'stats',
            'createdAt',
            'updatedAt',
        )
        read_only_fields = ('status', 'stats')

    def validate_customers(self, value):
        ids = list(dict.fromkeys(str(pk) for pk in value))
        known = {str(pk) for pk in Customer.objects.filter(id__in=ids).values_list('id', flat=True)}
        missing = [pk for pk in ids if pk not in known]
        if missing:
            raise serializers.ValidationError(f"Unknown customers: {', '.join(missing)}")
        return ids

    def validate(self, attrs):
        if self.instance is None and not attrs.get('segment') and not attrs.get('customer_ids'):
            raise serializers.ValidationError('A campaign needs a segment or an explicit customer list')
        return attrs

    def update(self, instance: Campaign, validated_data: dict[str, Any]) -> Campaign:
        segment_changed = 'segment' in validated_data and validated_data['segment'] != instance.segment
        if segment_changed and 'customer_ids' not in validated_data:
            validated_data['customer_ids'] = []
        return super().update(instance, validated_data)


class CampaignSendResultSerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    sentAt = serializers.DateTimeField(source='sent_at', read_only=True)

    class Meta:
        model = Campaign
        fields = ('_id', 'name', 'status', 'sentAt', 'stats')


class GenerateMessageSerializer(serializers.Serializer):
    objective = serializers.CharField(max_length=500)
    audience = serializers.CharField(max_length=500, required=False, allow_blank=True)
    tone = serializers.CharField(max_length=60, required=False, allow_blank=True)


class MessageSerializer(serializers.ModelSerializer):
    _id = serializers.UUIDField(source='id', read_only=True)
    customerId = serializers.UUIDField(source='customer_id', read_only=True)
    campaignId = serializers.UUIDField(source='campaign_id', read_only=True)
    campaignName = serializers.CharField(source='campaign_name', read_only=True)
    customer = serializers.SerializerMethodField()
    vendorMessageId = serializers.CharField(source='vendor_message_id', read_only=True)

    class Meta:
        model = Message
        fields = (
            '_id',
            'customerId',
            'customer',
            'campaignId',
            'campaignName',
            'message',
            'timestamp',
            'read',
            'status',
            'vendorMessageId',
            'error',
        )
        read_only_fields = fields

    def get_customer(self, obj: Message):
        customers = self.context.get('customers', {})
        customer = customers.get(obj.customer_id)
        if customer is None:
            return None
        return {'name': customer.name, 'email': customer.email}


class MessageUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Message
        fields = ('read', 'status')
        extra_kwargs = {
            'read': {'required': False},
            'status': {'required': False},
        }
