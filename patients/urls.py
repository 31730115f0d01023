from django.urls import path

from . import views

app_name = "patients"

urlpatterns = [
    # Duplicates & merge (before <uuid:id>/ routes)
    path("merge/", views.PatientMergeView.as_view(), name="patient-merge"),
    path("duplicates/search/", views.DuplicateSearchView.as_view(), name="duplicate-search"),

    # Patients
    path("", views.PatientListCreateView.as_view(), name="patient-list-create"),
    path("<uuid:id>/", views.PatientDetailView.as_view(), name="patient-detail"),
    path("<uuid:id>/restore/", views.PatientRestoreView.as_view(), name="patient-restore"),
    path("<uuid:id>/duplicates/", views.PatientDuplicatesView.as_view(), name="patient-duplicates"),
    path("<uuid:id>/merge-history/", views.PatientMergeHistoryView.as_view(), name="patient-merge-history"),
    path("<uuid:id>/relationships/", views.PatientRelationshipListCreateView.as_view(), name="patient-relationships"),
    path("<uuid:id>/timeline/", views.PatientTimelineView.as_view(), name="patient-timeline"),
]
