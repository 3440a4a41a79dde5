"""Database models for the audience CRM backend."""
import uuid
from decimal import Decimal
from typing import Optional

from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


def empty_dict():
    return {}


def empty_list():
    return []


def default_campaign_stats():
    return {
        'totalAudience': 0,
        'sent': 0,
        'delivered': 0,
        'failed': 0,
        'opened': 0,
        'clicked': 0,
    }


class UserManager(BaseUserManager):
    """Manager for custom user model that authenticates with email."""

    def create_user(self, email: str, password: Optional[str] = None, **extra_fields):
        if not email:
            raise ValueError('Users must have an email address')
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email: str, password: str, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')
        return self.create_user(email=email, password=password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """Operator account that owns segments and sent messages."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120)
    email = models.EmailField(unique=True)
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['name']

    objects = UserManager()

    class Meta:
        ordering = ('-created_at',)

    def __str__(self) -> str:
        return self.email


class Customer(models.Model):
    """End customers targeted by campaigns."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=32, blank=True)
    address = models.JSONField(default=empty_dict, blank=True)
    # Cached sum of delivered order totals, see services.refresh_total_spent.
    total_spent = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    visits = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)

    def __str__(self) -> str:
        return self.email


class Order(models.Model):
    """Customer purchase; delivered orders feed customer spend."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PROCESSING = 'processing', 'Processing'
        SHIPPED = 'shipped', 'Shipped'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey(Customer, related_name='orders', on_delete=models.CASCADE)
    order_number = models.CharField(max_length=40, unique=True)
    items = models.JSONField(default=empty_list)
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        default=Decimal('0.00'),
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    shipping_address = models.JSONField(default=empty_dict)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)
        indexes = [
            models.Index(fields=('customer', 'status'), name='crm_order_customer_status_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status})"


class Segment(models.Model):
    """Rule-based audience definition over customer attributes."""

    class RuleOperator(models.TextChoices):
        AND = 'AND', 'All rules'
        OR = 'OR', 'Any rule'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=120)
    description = models.TextField(blank=True)
    rules = models.JSONField(default=empty_list, blank=True)
    rule_operator = models.CharField(max_length=3, choices=RuleOperator.choices, default=RuleOperator.AND)
    customer_count = models.PositiveIntegerField(default=0)
    created_by = models.ForeignKey(
        User,
        related_name='segments',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)

    def __str__(self) -> str:
        return self.name


class Campaign(models.Model):
    """Single send of a message to a resolved audience."""

    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=160)
    segment = models.ForeignKey(
        Segment,
        related_name='campaigns',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    message = models.TextField()
    # Weak references to the frozen audience; deleting a customer keeps its id here.
    customer_ids = models.JSONField(default=empty_list, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    scheduled_for = models.DateTimeField(null=True, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    stats = models.JSONField(default=default_campaign_stats)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ('-created_at',)
        indexes = [
            models.Index(fields=('status',), name='crm_campaign_status_idx'),
        ]

    def __str__(self) -> str:
        return self.name

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class Message(models.Model):
    """Per-recipient delivery record created during campaign dispatch."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        DELIVERED = 'delivered', 'Delivered'
        FAILED = 'failed', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(User, related_name='messages', on_delete=models.CASCADE)
    # Weak references: rows outlive the customer and campaign they mention.
    customer_id = models.UUIDField(db_index=True)
    campaign_id = models.UUIDField(db_index=True)
    campaign_name = models.CharField(max_length=160)
    message = models.TextField()
    timestamp = models.DateTimeField(default=timezone.now)
    read = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=Status.choices)
    vendor_message_id = models.CharField(max_length=120, null=True, blank=True)
    error = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ('-timestamp',)
        indexes = [
            models.Index(fields=('user', '-timestamp'), name='crm_message_user_ts_idx'),
            models.Index(fields=('campaign_id', 'status'), name='crm_message_campaign_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.campaign_name} -> {self.customer_id} ({self.status})"
