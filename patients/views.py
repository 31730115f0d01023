from __future__ import annotations

import logging

from django.utils.translation import gettext_lazy as _

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, status
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    OpenApiTypes,
    extend_schema,
)

from accounts.permissions import IsAdmin, IsFrontDeskStaff
from accounts.tenancy import get_tenant_context

from .serializers import (
    DuplicateGroupSerializer,
    DuplicateMatchSerializer,
    PatientMergeHistorySerializer,
    PatientMergeInputSerializer,
    PatientReadSerializer,
    PatientRelationshipInputSerializer,
    PatientRelationshipSerializer,
    PatientTimelineEventSerializer,
    PatientWriteSerializer,
)
from .services import patients as patient_services

logger = logging.getLogger(__name__)


def _ok(data, *, message=None, http_status=status.HTTP_200_OK, **extra) -> Response:
    body = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    body.update(extra)
    return Response(body, status=http_status)


# =========================
# PATIENTS
# =========================

@extend_schema(
    tags=["Patients"],
    summary="List patients",
    description=(
        "Lists live patients of the caller's tenant.\n\n"
        "- Search: `?search=` (names, patient number)\n"
        "- Filter: status, gender, clinic_id, date_of_birth\n"
        "- Ordering: created_at, last_name (use `-` for desc)"
    ),
    parameters=[
        OpenApiParameter(name="search", type=OpenApiTypes.STR, required=False),
        OpenApiParameter(name="ordering", type=OpenApiTypes.STR, required=False),
    ],
    responses={
        200: OpenApiResponse(response=PatientReadSerializer(many=True), description="Patients returned."),
        401: OpenApiResponse(description="Authentication required."),
    },
)
class PatientListCreateView(generics.ListCreateAPIView):
    """
    GET  /patients/ -> list/search
    POST /patients/ -> create
    """
    permission_classes = [IsFrontDeskStaff]
    serializer_class = PatientReadSerializer
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]

    search_fields = ["first_name", "last_name", "middle_name", "patient_number"]
    ordering_fields = ["created_at", "last_name", "date_of_birth"]
    ordering = ["-created_at"]

    filterset_fields = {
        "status": ["exact"],
        "gender": ["exact"],
        "clinic_id": ["exact"],
        "date_of_birth": ["exact", "gte", "lte"],
    }

    def get_queryset(self):
        return patient_services.list_patients(ctx=get_tenant_context(self.request))

    @extend_schema(
        tags=["Patients"],
        summary="Create patient",
        request=PatientWriteSerializer,
        responses={
            201: OpenApiResponse(response=PatientReadSerializer, description="Patient created."),
            400: OpenApiResponse(description="Validation error."),
        },
    )
    def post(self, request, *args, **kwargs):
        ctx = get_tenant_context(request)
        serializer = PatientWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payload, _version = serializer.to_service_payload()

        patient = patient_services.register_patient(ctx=ctx, payload=payload, request=request)
        return _ok(PatientReadSerializer(patient).data, http_status=status.HTTP_201_CREATED)


@extend_schema(
    tags=["Patients"],
    summary="Retrieve patient",
    responses={
        200: OpenApiResponse(response=PatientReadSerializer, description="Patient retrieved."),
        404: OpenApiResponse(description="Patient not found."),
    },
)
class PatientDetailView(APIView):
    """
    GET    /patients/{id}/ -> retrieve
    PATCH  /patients/{id}/ -> partial update (optimistic `version` check)
    DELETE /patients/{id}/ -> soft delete (Admin only)
    """

    def get_permissions(self):
        if self.request.method == "DELETE":
            return [IsAdmin()]
        return [IsFrontDeskStaff()]

    def get(self, request, id):
        patient = patient_services.get_patient(ctx=get_tenant_context(request), patient_id=id)
        return _ok(PatientReadSerializer(patient).data)

    @extend_schema(
        tags=["Patients"],
        summary="Update patient",
        description=(
            "Partially updates a patient. Send the `version` you last read to "
            "reject the write with 409 if someone else changed the record."
        ),
        request=PatientWriteSerializer,
        responses={
            200: OpenApiResponse(response=PatientReadSerializer, description="Patient updated."),
            400: OpenApiResponse(description="Validation error."),
            404: OpenApiResponse(description="Patient not found."),
            409: OpenApiResponse(description="Version conflict."),
        },
    )
    def patch(self, request, id):
        ctx = get_tenant_context(request)
        serializer = PatientWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        payload, expected_version = serializer.to_service_payload()

        patient = patient_services.update_patient(
            ctx=ctx,
            patient_id=id,
            payload=payload,
            expected_version=expected_version,
            request=request,
        )
        return _ok(PatientReadSerializer(patient).data)

    @extend_schema(
        tags=["Patients"],
        summary="Delete patient (Admin only)",
        description="Soft-deletes a patient. The record is retained and can be restored.",
        responses={
            204: OpenApiResponse(description="Patient soft-deleted."),
            404: OpenApiResponse(description="Patient not found."),
        },
    )
    def delete(self, request, id):
        patient_services.soft_delete_patient(ctx=get_tenant_context(request), patient_id=id, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema(
    tags=["Patients (Admin)"],
    summary="Restore a soft-deleted patient (Admin only)",
    request=None,
    responses={
        200: OpenApiResponse(response=PatientReadSerializer, description="Patient restored."),
        400: OpenApiResponse(description="Patient is not deleted, or was archived by a merge."),
        404: OpenApiResponse(description="Patient not found."),
    },
)
class PatientRestoreView(APIView):
    permission_classes = [IsAdmin]

    def post(self, request, id):
        patient = patient_services.restore_patient(ctx=get_tenant_context(request), patient_id=id, request=request)
        return _ok(PatientReadSerializer(patient).data, message=_("Patient restored successfully."))


# =========================
# DUPLICATES & MERGE
# =========================

@extend_schema(
    tags=["Patient Duplicates"],
    summary="Scan the tenant for duplicate patients",
    description=(
        "Groups live patients sharing a phone number, an e-mail address, or "
        "last name + first-name prefix + date of birth. A patient can appear "
        "in more than one group when the groups' members differ."
    ),
    responses={200: OpenApiResponse(response=DuplicateGroupSerializer(many=True), description="Duplicate groups.")},
)
class DuplicateSearchView(APIView):
    permission_classes = [IsFrontDeskStaff]

    def get(self, request):
        ctx = get_tenant_context(request)
        groups = patient_services.find_duplicate_groups(ctx=ctx, request=request)
        data = DuplicateGroupSerializer(groups, many=True).data
        return _ok(data, count=len(groups))


@extend_schema(
    tags=["Patient Duplicates"],
    summary="Possible duplicates of one patient",
    responses={
        200: OpenApiResponse(response=DuplicateMatchSerializer(many=True), description="Matches."),
        404: OpenApiResponse(description="Patient not found."),
    },
)
class PatientDuplicatesView(APIView):
    permission_classes = [IsFrontDeskStaff]

    def get(self, request, id):
        matches = patient_services.find_duplicates_for_patient(ctx=get_tenant_context(request), patient_id=id)
        return _ok(DuplicateMatchSerializer(matches, many=True).data, count=len(matches))


@extend_schema(
    tags=["Patient Duplicates"],
    summary="Merge two patients (Admin only)",
    description=(
        "Folds the duplicate into the master: contacts, medical summary, tags "
        "and notes are combined onto the master, and the duplicate is archived. "
        "Patients of another tenant are reported as not found."
    ),
    request=PatientMergeInputSerializer,
    responses={
        200: OpenApiResponse(response=PatientReadSerializer, description="Patients merged successfully."),
        400: OpenApiResponse(description="Self-merge or malformed id."),
        403: OpenApiResponse(description="Permission denied."),
        404: OpenApiResponse(description="Either patient not found."),
        409: OpenApiResponse(description="A patient changed during the merge; retry."),
    },
)
class PatientMergeView(APIView):
    permission_classes = [IsAdmin]

    def post(self, request):
        ctx = get_tenant_context(request)
        serializer = PatientMergeInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = patient_services.merge_patients(
            ctx=ctx,
            master_id=data["master_id"],
            duplicate_id=data["duplicate_id"],
            request=request,
        )
        return _ok(
            PatientReadSerializer(result.master).data,
            message=_("Patients merged successfully."),
        )


@extend_schema(
    tags=["Patient Duplicates"],
    summary="Merge history for a patient",
    responses={200: OpenApiResponse(response=PatientMergeHistorySerializer(many=True), description="History.")},
)
class PatientMergeHistoryView(APIView):
    permission_classes = [IsFrontDeskStaff]

    def get(self, request, id):
        history = patient_services.get_merge_history(ctx=get_tenant_context(request), patient_id=id)
        return _ok(PatientMergeHistorySerializer(history, many=True).data, count=len(history))


# =========================
# RELATIONSHIPS & TIMELINE
# =========================

@extend_schema(
    tags=["Patient Relationships"],
    summary="List or add relationships of a patient",
    responses={200: OpenApiResponse(response=PatientRelationshipSerializer(many=True), description="Links.")},
)
class PatientRelationshipListCreateView(APIView):
    permission_classes = [IsFrontDeskStaff]

    def get(self, request, id):
        links = patient_services.list_relationships(ctx=get_tenant_context(request), patient_id=id)
        return _ok(PatientRelationshipSerializer(links, many=True).data)

    @extend_schema(
        tags=["Patient Relationships"],
        request=PatientRelationshipInputSerializer,
        responses={201: OpenApiResponse(response=PatientRelationshipSerializer, description="Link created.")},
    )
    def post(self, request, id):
        ctx = get_tenant_context(request)
        serializer = PatientRelationshipInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        link = patient_services.add_relationship(ctx=ctx, patient_id=id, **serializer.validated_data)
        return _ok(PatientRelationshipSerializer(link).data, http_status=status.HTTP_201_CREATED)


@extend_schema(
    tags=["Patient Timeline"],
    summary="Activity timeline of a patient",
    responses={200: OpenApiResponse(response=PatientTimelineEventSerializer(many=True), description="Events.")},
)
class PatientTimelineView(generics.ListAPIView):
    permission_classes = [IsFrontDeskStaff]
    serializer_class = PatientTimelineEventSerializer

    def get_queryset(self):
        return patient_services.list_timeline(
            ctx=get_tenant_context(self.request),
            patient_id=self.kwargs["id"],
        )
