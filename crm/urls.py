"""URL routes for the audience CRM API."""
from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from . import views

urlpatterns = [
    path('auth/login/', views.LoginView.as_view(), name='auth-login'),
    path('auth/token/refresh/', TokenRefreshView.as_view(), name='auth-token-refresh'),
    path('auth/me/', views.CurrentUserView.as_view(), name='auth-me'),
    path('customers/', views.CustomerListCreateView.as_view(), name='customer-list'),
    path('customers/<uuid:customer_id>/', views.CustomerDetailView.as_view(), name='customer-detail'),
    path('orders/', views.OrderListCreateView.as_view(), name='order-list'),
    path('orders/customer/<uuid:customer_id>/', views.CustomerOrderListView.as_view(), name='customer-orders'),
    path('orders/<uuid:order_id>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<uuid:order_id>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('segments/', views.SegmentListCreateView.as_view(), name='segment-list'),
    path('segments/preview/', views.SegmentPreviewView.as_view(), name='segment-preview'),
    path('segments/<uuid:segment_id>/', views.SegmentDetailView.as_view(), name='segment-detail'),
    path('segments/<uuid:segment_id>/customers/', views.SegmentCustomersView.as_view(), name='segment-customers'),
    path('campaigns/', views.CampaignListCreateView.as_view(), name='campaign-list'),
    path('campaigns/generate-message/', views.GenerateMessageView.as_view(), name='campaign-generate-message'),
    path('campaigns/<uuid:campaign_id>/', views.CampaignDetailView.as_view(), name='campaign-detail'),
    path('campaigns/<uuid:campaign_id>/customers/', views.CampaignCustomersView.as_view(), name='campaign-customers'),
    path('campaigns/<uuid:campaign_id>/send/', views.CampaignSendView.as_view(), name='campaign-send'),
    path('messages/', views.MessageListView.as_view(), name='message-list'),
    path('messages/<uuid:message_id>/', views.MessageDetailView.as_view(), name='message-detail'),
    path('messages/<uuid:message_id>/read/', views.MessageReadView.as_view(), name='message-read'),
]
