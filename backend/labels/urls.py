from django.urls import path
from .views import barcode_view, label_view

urlpatterns = [
    path('', barcode_view, name='barcode-missing-id'),
    path('<str:donated_item_id>/label/', label_view, name='donated-item-label'),
    path('<str:donated_item_id>/', barcode_view, name='barcode'),
]
