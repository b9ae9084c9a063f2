"""
URL mappings for the clinic API.

Trailing slashes are omitted, matching the paths the staff terminals call.
"""
from django.urls import path, include

from .views import dashboard, health, lab, patients, pharmacy, queues

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    path('api/patients/register', patients.register_patient),
    path('api/patients', patients.list_patients),
    path('api/patients/<str:patient_id>', patients.patient_detail),
    path('api/patients/<str:patient_id>/advance', patients.advance_patient),
    path('api/patients/<str:patient_id>/vitals', patients.record_vitals),
    path('api/patients/<str:patient_id>/discharge-failsafe', patients.discharge_failsafe),
    path('api/opd/call-next', queues.call_next),
    path('api/queues/<str:department>', queues.queue_list),
    path('api/lab/orders', lab.lab_orders),
    path('api/lab/equipment', lab.lab_equipment),
    path('api/lab/orders/<str:order_id>/begin', lab.begin_processing),
    path('api/lab/orders/<str:order_id>/result', lab.upload_result),
    path('api/pharmacy/prescriptions', pharmacy.prescriptions),
    path('api/pharmacy/prescriptions/<str:prescription_id>/dispense', pharmacy.dispense),
    path('api/pharmacy/prescriptions/<str:prescription_id>/cancel', pharmacy.cancel),
    path('api/inventory', pharmacy.inventory_list),
    path('api/inventory/<str:drug_id>', pharmacy.inventory_detail),
    path('api/inventory/<str:drug_id>/restock', pharmacy.restock),
    path('api/dashboard', dashboard.dashboard),
]
