from django.urls import path
from . import views

app_name = 'consultations'

urlpatterns = [
    path('consultations/check-duplicate/', views.check_duplicate, name='check-duplicate'),
    path('consultations/<uuid:consultation_id>/process/', views.start_processing, name='start-processing'),
    path('consultations/<uuid:consultation_id>/retry/', views.retry_processing, name='retry-processing'),
    path('consultations/<uuid:consultation_id>/status/', views.processing_status, name='processing-status'),
    path(
        'consultations/<uuid:consultation_id>/patient-updates/confirm/',
        views.confirm_patient_updates,
        name='confirm-patient-updates',
    ),
]
