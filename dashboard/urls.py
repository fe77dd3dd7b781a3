from django.urls import path

from . import views

urlpatterns = [
    path('orders/', views.OrderListView.as_view(), name='order-list'),
    path('orders/<int:order_id>/', views.OrderDetailView.as_view(), name='order-detail'),
    path('orders/<int:order_id>/status/', views.OrderStatusView.as_view(), name='order-status'),
    path('orders/<int:order_id>/confirm/', views.OrderConfirmView.as_view(), name='order-confirm'),

    path('messages/', views.MessageListView.as_view(), name='message-list'),
    path('messages/<int:message_id>/', views.MessageDetailView.as_view(), name='message-detail'),

    path('calendar/', views.CalendarView.as_view(), name='calendar'),
    path('stats/daily/', views.DailyStatsView.as_view(), name='stats-daily'),

    path('deliveries/today/', views.TodayDeliveriesView.as_view(), name='deliveries-today'),
    path('deliveries/<int:order_id>/delivered/', views.MarkDeliveredView.as_view(), name='delivery-delivered'),

    path('kpis/', views.KpisListView.as_view(), name='kpis-list'),
    path('kpis/<int:report_id>/reported/', views.KpisReportedView.as_view(), name='kpis-reported'),
    path('kpis/<int:report_id>/confirm/', views.KpisConfirmView.as_view(), name='kpis-confirm'),

    path('reports/sales/', views.SalesReportView.as_view(), name='report-sales'),

    path('hospitals/', views.HospitalListView.as_view(), name='hospital-list'),
    path('hospitals/<int:hospital_id>/', views.HospitalDetailView.as_view(), name='hospital-detail'),
    path('products/', views.ProductListView.as_view(), name='product-list'),
    path('products/<int:product_id>/', views.ProductDetailView.as_view(), name='product-detail'),
    path('products/<int:product_id>/aliases/', views.ProductAliasListView.as_view(), name='alias-list'),
    path('products/<int:product_id>/aliases/<int:alias_id>/', views.ProductAliasDetailView.as_view(),
         name='alias-detail'),
    path('suppliers/', views.SupplierListView.as_view(), name='supplier-list'),
    path('suppliers/<int:supplier_id>/', views.SupplierDetailView.as_view(), name='supplier-detail'),

    path('settings/', views.SettingsView.as_view(), name='settings'),
    path('settings/test-parse/', views.TestParseView.as_view(), name='test-parse'),
    path('settings/test-parse/<str:task_id>/', views.TestParseResultView.as_view(), name='test-parse-result'),
]
