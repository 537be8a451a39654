import pytest
import uuid

from genorder.core.exceptions import (
    ErrorKind, NotFound, RemoteFailure, ResourceConflict, ValidationFailure,
)
from genorder.domain.composition.models import (
    CompositionRun, CompositionState, CompositionStep, StepPolicy, StepStatus,
)
from genorder.domain.composition.service import (
    CompositionOrchestrator, merge_labcodes, service_matches, split_medications,
)
from genorder.domain.resources.models import (
    CatalogService, ClinicalProfile, GenomeTest, ReproductionDetail, ServiceType,
)
from genorder.domain.workflow.models import OrderSnapshot
from tests.conftest import fail, ok

pytestmark = pytest.mark.composition


@pytest.fixture
def orchestrator(gateway) -> CompositionOrchestrator:
    return CompositionOrchestrator(gateway)


def _statuses(result):
    return {o.step: o.status for o in result.outcomes}


# ==================== Happy path ====================

@pytest.mark.asyncio
async def test_new_patient_reproduction_order(orchestrator, gateway, new_patient_snapshot):
    """New patient with a reproduction service and a genome test"""
    result = await orchestrator.compose(new_patient_snapshot)

    assert result.success is True
    assert result.state == CompositionState.DONE
    assert result.partial_failures == []

    created_patient = gateway.patients.create.await_args.args[0]
    assert uuid.UUID(created_patient.patient_id).version == 4
    assert created_patient.patient_name == "Nguyen Thi Lan"
    assert result.created_patient_id == created_patient.patient_id
    assert result.patient_id == created_patient.patient_id

    detail, service_id, patient_id = gateway.service_details.create.await_args.args
    assert isinstance(detail, ReproductionDetail)
    assert detail.fetuses_week == 12
    assert service_id == "SRV-REPRO"
    assert patient_id == created_patient.patient_id

    prescription = gateway.prescriptions.create.await_args.args[0]
    assert prescription.service_id == "SRV-REPRO"
    assert prescription.patient_id == created_patient.patient_id
    assert prescription.genome_test_id == "GT-1"
    assert prescription.send_email_patient is False

    order_payload = gateway.orders.create.await_args.args[0]
    assert order_payload.prescription_id == "SP-1"
    assert order_payload.barcode_id == "BC-100"
    assert order_payload.order_status == "initiation"
    assert order_payload.payment_status == "PENDING"
    assert result.order_id == "ORD-1"
    assert result.prescription_id == "SP-1"


@pytest.mark.asyncio
async def test_labcode_attached_with_full_order_payload(orchestrator, gateway, new_patient_snapshot):
    result = await orchestrator.compose(new_patient_snapshot)

    assert result.labcode == "LAB-001"
    specify_id, patient_id, sample_name = gateway.sample_metadata.create.await_args.args
    assert specify_id == "SP-1"
    assert patient_id == result.patient_id
    assert sample_name == "Máu tĩnh mạch"

    order_id, payload = gateway.orders.update.await_args.args
    assert order_id == "ORD-1"
    assert payload.patient_metadata_ids == ["LAB-001"]
    assert payload.order_name == "NIPT-2024-001"
    assert payload.barcode_id == "BC-100"
    assert payload.prescription_id == "SP-1"
    assert _statuses(result)[CompositionStep.ATTACH_LABCODE] == StepStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_outcomes_follow_step_order(orchestrator, new_patient_snapshot):
    result = await orchestrator.compose(new_patient_snapshot)

    assert [o.step for o in result.outcomes] == [
        CompositionStep.RESOLVE_PATIENT,
        CompositionStep.UPSERT_CLINICAL_PROFILE,
        CompositionStep.CREATE_SERVICE_DETAIL,
        CompositionStep.RESOLVE_PRESCRIPTION,
        CompositionStep.COMMIT_ORDER,
        CompositionStep.ENABLE_PATIENT_EMAIL,
        CompositionStep.CREATE_SAMPLE_METADATA,
        CompositionStep.ATTACH_LABCODE,
        CompositionStep.FORWARD_PRESCRIPTION_STATUS,
        CompositionStep.RESET_BARCODE_STATUS,
    ]
    policies = {o.step: o.policy for o in result.outcomes}
    assert policies[CompositionStep.COMMIT_ORDER] == StepPolicy.CRITICAL
    assert policies[CompositionStep.UPSERT_CLINICAL_PROFILE] == StepPolicy.BEST_EFFORT


# ==================== Best-effort tail ====================

@pytest.mark.asyncio
async def test_sample_metadata_failure_keeps_order(orchestrator, gateway, new_patient_snapshot, log_messages):
    gateway.sample_metadata.create.side_effect = None
    gateway.sample_metadata.create.return_value = fail("Internal Server Error", 500)

    result = await orchestrator.compose(new_patient_snapshot)

    assert result.success is True
    assert result.order_id == "ORD-1"
    assert result.labcode is None
    gateway.orders.update.assert_not_awaited()
    assert result.partial_failures == [CompositionStep.CREATE_SAMPLE_METADATA]
    assert _statuses(result)[CompositionStep.ATTACH_LABCODE] == StepStatus.SKIPPED
    assert any(
        "PARTIAL_SUCCESS" in m and "create_sample_metadata" in m for m in log_messages
    )


@pytest.mark.asyncio
async def test_labcode_update_failure_is_partial(orchestrator, gateway, new_patient_snapshot):
    gateway.orders.update.side_effect = None
    gateway.orders.update.return_value = fail("Service Unavailable", 503)

    result = await orchestrator.compose(new_patient_snapshot)

    assert result.success is True
    assert result.labcode == "LAB-001"
    assert result.state == CompositionState.DONE
    assert result.partial_failures == [CompositionStep.ATTACH_LABCODE]
    outcome = next(o for o in result.outcomes if o.step == CompositionStep.ATTACH_LABCODE)
    assert outcome.error_kind == ErrorKind.REMOTE_FAILURE


@pytest.mark.asyncio
async def test_unexpected_tail_exception_is_contained(orchestrator, gateway, new_patient_snapshot):
    gateway.sample_metadata.create.side_effect = RuntimeError("socket closed")

    result = await orchestrator.compose(new_patient_snapshot)

    assert result.success is True
    assert result.partial_failures == [CompositionStep.CREATE_SAMPLE_METADATA]


@pytest.mark.asyncio
async def test_commit_returns_before_tail(orchestrator, gateway, new_patient_snapshot):
    run = await orchestrator.commit(CompositionRun(new_patient_snapshot))

    assert run.state == CompositionState.ORDER_COMMITTED
    assert run.to_result().success is True
    gateway.sample_metadata.create.assert_not_awaited()

    await orchestrator.run_tail(run)
    assert run.state == CompositionState.DONE
    gateway.sample_metadata.create.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_tail_ignores_uncommitted_run(orchestrator, gateway, new_patient_snapshot):
    run = CompositionRun(new_patient_snapshot)

    await orchestrator.run_tail(run)

    assert run.state == CompositionState.IDLE
    gateway.sample_metadata.create.assert_not_awaited()


# ==================== Critical failures ====================

@pytest.mark.asyncio
async def test_service_detail_failure_short_circuits(orchestrator, gateway, new_patient_snapshot, log_messages):
    gateway.service_details.create.side_effect = None
    gateway.service_details.create.return_value = fail("Internal Server Error", 500)
    run = CompositionRun(new_patient_snapshot)

    with pytest.raises(RemoteFailure) as exc_info:
        await orchestrator.commit(run)

    gateway.prescriptions.create.assert_not_awaited()
    gateway.orders.create.assert_not_awaited()
    assert run.state == CompositionState.FAILED
    assert run.to_result().success is False
    # Patient created before the failure is not rolled back but reported
    assert exc_info.value.details["created_patient_id"] == run.created_patient_id
    assert exc_info.value.details["resource"] == "service_detail"
    assert any("Composition failed" in m for m in log_messages)
    assert not any("PARTIAL_SUCCESS" in m for m in log_messages)


@pytest.mark.asyncio
async def test_patient_create_failure_aborts(orchestrator, gateway, new_patient_snapshot):
    gateway.patients.create.side_effect = None
    gateway.patients.create.return_value = fail("patientPhone: must not be blank", 400)

    with pytest.raises(ValidationFailure):
        await orchestrator.compose(new_patient_snapshot)

    gateway.service_details.create.assert_not_awaited()
    gateway.orders.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_critical_exception_is_normalized(orchestrator, gateway, new_patient_snapshot):
    gateway.patients.create.side_effect = ConnectionError("connection reset")

    with pytest.raises(RemoteFailure) as exc_info:
        await orchestrator.compose(new_patient_snapshot)

    assert exc_info.value.error_code == "CONNECTIONERROR_ERROR"
    gateway.orders.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_barcode_conflict_maps_to_resource_conflict(orchestrator, gateway, new_patient_snapshot):
    gateway.orders.create.side_effect = None
    gateway.orders.create.return_value = fail("Barcode BC-100 is already used by another order", 400)

    with pytest.raises(ResourceConflict) as exc_info:
        await orchestrator.compose(new_patient_snapshot)

    assert exc_info.value.details["field"] == "barcode_id"
    assert exc_info.value.status_code == 409
    gateway.sample_metadata.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_prescription_double_binding_is_conflict(orchestrator, gateway, new_patient_snapshot):
    gateway.orders.create.side_effect = None
    gateway.orders.create.return_value = fail("Order for this specify already exists", 409)

    with pytest.raises(ResourceConflict) as exc_info:
        await orchestrator.compose(new_patient_snapshot)

    assert exc_info.value.details["field"] == "prescription_id"


@pytest.mark.asyncio
async def test_missing_catalog_service_is_not_found(orchestrator, gateway, new_patient_snapshot):
    gateway.services.get_all.return_value = ok([CatalogService(service_id="SRV-X", name="Other")])

    with pytest.raises(NotFound):
        await orchestrator.compose(new_patient_snapshot)

    gateway.service_details.create.assert_not_awaited()
    gateway.prescriptions.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_genome_test_without_service_is_validation_failure(orchestrator, gateway, new_patient_snapshot):
    gateway.genome_tests.get_by_id.return_value = ok(GenomeTest(test_id="GT-1", test_name="NIPT 24"))

    with pytest.raises(ValidationFailure):
        await orchestrator.compose(new_patient_snapshot)

    gateway.prescriptions.create.assert_not_awaited()
    gateway.orders.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_genome_test_is_not_found(orchestrator, gateway, new_patient_snapshot):
    gateway.genome_tests.get_by_id.return_value = fail("Genome test not found", 404)

    with pytest.raises(NotFound):
        await orchestrator.compose(new_patient_snapshot)


@pytest.mark.asyncio
async def test_service_without_patient_identity_is_rejected(orchestrator, gateway):
    snapshot = OrderSnapshot(order_name="NIPT-2024-002", service_type="disease", genome_test_id="GT-1")

    with pytest.raises(ValidationFailure):
        await orchestrator.compose(snapshot)

    gateway.patients.create.assert_not_awaited()
    gateway.orders.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_transport_error_is_remote_failure(orchestrator, gateway, new_patient_snapshot):
    gateway.orders.create.side_effect = None
    gateway.orders.create.return_value = fail("All connection attempts failed", transport_error=True)

    with pytest.raises(RemoteFailure) as exc_info:
        await orchestrator.compose(new_patient_snapshot)

    assert exc_info.value.status_code == 503


# ==================== Branching ====================

@pytest.mark.asyncio
async def test_order_without_patient_or_test_is_unanchored(orchestrator, gateway):
    snapshot = OrderSnapshot(order_name="WALK-IN-1", barcode_id="BC-7")

    result = await orchestrator.compose(snapshot)

    statuses = _statuses(result)
    assert statuses[CompositionStep.RESOLVE_PATIENT] == StepStatus.SKIPPED
    assert statuses[CompositionStep.CREATE_SERVICE_DETAIL] == StepStatus.SKIPPED
    assert statuses[CompositionStep.RESOLVE_PRESCRIPTION] == StepStatus.SKIPPED
    assert statuses[CompositionStep.CREATE_SAMPLE_METADATA] == StepStatus.SKIPPED
    assert gateway.orders.create.await_args.args[0].prescription_id is None
    assert result.success is True


@pytest.mark.asyncio
async def test_anchored_create_reuses_prescription(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_name="NIPT-2024-003",
        prescription_id="SP-9",
        service_type="reproduction",
        genome_test_id="GT-1",
        barcode_id="BC-200",
    )

    result = await orchestrator.compose(snapshot)

    gateway.patients.create.assert_not_awaited()
    gateway.service_details.create.assert_not_awaited()
    gateway.prescriptions.create.assert_not_awaited()
    assert gateway.orders.create.await_args.args[0].prescription_id == "SP-9"
    assert result.patient_id == "P-9"
    assert result.created_patient_id is None
    assert result.service_detail_id == "SD-9"
    assert _statuses(result)[CompositionStep.CREATE_SERVICE_DETAIL] == StepStatus.SKIPPED


@pytest.mark.asyncio
async def test_anchored_create_adds_missing_detail_variant(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_name="NIPT-2024-004",
        prescription_id="SP-9",
        service_type="embryo",
        service_detail={"service_type": "embryo", "embryo_create": 4},
    )

    result = await orchestrator.compose(snapshot)

    detail, service_id, patient_id = gateway.service_details.create.await_args.args
    assert detail.embryo_create == 4
    assert service_id == "SRV-EMBRYO"
    assert patient_id == "P-9"
    assert result.service_detail_id == "SD-1"


@pytest.mark.asyncio
async def test_existing_patient_updated_not_created(orchestrator, gateway, sample_order_data):
    snapshot = OrderSnapshot.model_validate({**sample_order_data, "patient_id": "P-42"})

    result = await orchestrator.compose(snapshot)

    gateway.patients.create.assert_not_awaited()
    patient_id, patient = gateway.patients.update.await_args.args
    assert patient_id == "P-42"
    assert patient.patient_phone == "0901234567"
    assert result.created_patient_id is None
    assert result.patient_id == "P-42"


@pytest.mark.asyncio
async def test_existing_patient_without_phone_is_left_alone(orchestrator, gateway, sample_order_data):
    data = {**sample_order_data, "patient_id": "P-42"}
    del data["patient_phone"]

    await orchestrator.compose(OrderSnapshot.model_validate(data))

    gateway.patients.update.assert_not_awaited()
    gateway.patients.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_new_patient_without_phone_gets_placeholder(orchestrator, gateway, sample_order_data):
    data = dict(sample_order_data)
    del data["patient_phone"]

    await orchestrator.compose(OrderSnapshot.model_validate(data))

    assert gateway.patients.create.await_args.args[0].patient_phone == "0000000000"


# ==================== Clinical profile ====================

@pytest.mark.asyncio
async def test_clinical_profile_created_when_absent(orchestrator, gateway, new_patient_snapshot):
    result = await orchestrator.compose(new_patient_snapshot)

    profile = gateway.clinical_profiles.create.await_args.args[0]
    assert profile.patient_id == result.patient_id
    assert profile.patient_height == 158.0
    assert profile.medical_using == ["Folic acid", "Iron", "Vitamin D"]
    gateway.clinical_profiles.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_clinical_profile_updated_when_present(orchestrator, gateway, new_patient_snapshot):
    gateway.clinical_profiles.get_by_patient_id.return_value = ok(
        ClinicalProfile(patient_clinical_id="PC-7", patient_id="P-X")
    )

    await orchestrator.compose(new_patient_snapshot)

    clinical_id, _ = gateway.clinical_profiles.update.await_args.args
    assert clinical_id == "PC-7"
    gateway.clinical_profiles.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_clinical_profile_create_race_falls_back_to_update(orchestrator, gateway, new_patient_snapshot):
    gateway.clinical_profiles.get_by_patient_id.side_effect = [
        fail("Patient clinical not found", 404),
        ok(ClinicalProfile(patient_clinical_id="PC-8", patient_id="P-X")),
    ]
    gateway.clinical_profiles.create.side_effect = None
    gateway.clinical_profiles.create.return_value = fail("Patient clinical already exists", 409)

    result = await orchestrator.compose(new_patient_snapshot)

    assert gateway.clinical_profiles.update.await_args.args[0] == "PC-8"
    assert _statuses(result)[CompositionStep.UPSERT_CLINICAL_PROFILE] == StepStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_clinical_profile_failure_does_not_block_order(orchestrator, gateway, new_patient_snapshot):
    gateway.clinical_profiles.get_by_patient_id.return_value = fail("Internal Server Error", 500)

    result = await orchestrator.compose(new_patient_snapshot)

    assert result.success is True
    assert result.partial_failures == [CompositionStep.UPSERT_CLINICAL_PROFILE]
    gateway.orders.create.assert_awaited_once()


# ==================== Post-commit propagation ====================

@pytest.mark.asyncio
async def test_forward_status_propagates_to_prescription_and_barcode(orchestrator, gateway, sample_order_data):
    snapshot = OrderSnapshot.model_validate({**sample_order_data, "order_status": "forward_analysis"})

    await orchestrator.compose(snapshot)

    gateway.prescriptions.update_status.assert_awaited_once_with("SP-1", "forward_analysis")
    gateway.barcodes.update.assert_awaited_once_with("BC-100", "not_printed")


@pytest.mark.asyncio
async def test_forward_propagation_steps_are_independent(orchestrator, gateway, sample_order_data):
    gateway.prescriptions.update_status.return_value = fail("Internal Server Error", 500)
    snapshot = OrderSnapshot.model_validate({**sample_order_data, "order_status": "forward_analysis"})

    result = await orchestrator.compose(snapshot)

    gateway.barcodes.update.assert_awaited_once()
    assert result.partial_failures == [CompositionStep.FORWARD_PRESCRIPTION_STATUS]


@pytest.mark.asyncio
async def test_no_propagation_for_initial_status(orchestrator, gateway, new_patient_snapshot):
    await orchestrator.compose(new_patient_snapshot)

    gateway.prescriptions.update_status.assert_not_awaited()
    gateway.barcodes.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_patient_email_enabled_only_after_commit(orchestrator, gateway, sample_order_data):
    calls = []
    create_order = gateway.orders.create.side_effect
    gateway.orders.create.side_effect = lambda payload: calls.append("order") or create_order(payload)
    update_prescription = gateway.prescriptions.update.side_effect
    gateway.prescriptions.update.side_effect = (
        lambda pid, payload: calls.append("email") or update_prescription(pid, payload)
    )
    snapshot = OrderSnapshot.model_validate({**sample_order_data, "notify_patient_email": True})

    await orchestrator.compose(snapshot)

    assert gateway.prescriptions.create.await_args.args[0].send_email_patient is False
    prescription_id, payload = gateway.prescriptions.update.await_args.args
    assert prescription_id == "SP-1"
    assert payload.send_email_patient is True
    assert payload.genome_test_id == "GT-1"
    assert calls == ["order", "email"]


@pytest.mark.asyncio
async def test_patient_email_not_enabled_without_address(orchestrator, gateway, sample_order_data):
    data = {**sample_order_data, "notify_patient_email": True}
    del data["patient_email"]

    await orchestrator.compose(OrderSnapshot.model_validate(data))

    gateway.prescriptions.update.assert_not_awaited()


# ==================== Edit flow ====================

@pytest.mark.asyncio
async def test_edit_updates_prescription_and_order(orchestrator, gateway, sample_order_data):
    snapshot = OrderSnapshot.model_validate({
        **sample_order_data,
        "order_id": "ORD-77",
        "patient_id": "P-42",
        "prescription_id": "SP-77",
        "service_detail_id": "SD-77",
        "known_labcodes": ["LAB-OLD"],
    })

    result = await orchestrator.compose(snapshot)

    gateway.orders.create.assert_not_awaited()
    gateway.prescriptions.create.assert_not_awaited()
    gateway.service_details.create.assert_not_awaited()
    assert gateway.prescriptions.update.await_args_list[0].args[0] == "SP-77"
    first_update = gateway.orders.update.await_args_list[0].args
    assert first_update[0] == "ORD-77"
    assert first_update[1].prescription_id == "SP-77"
    assert first_update[1].patient_metadata_ids == ["LAB-OLD"]
    gateway.sample_metadata.create.assert_not_awaited()
    gateway.orders.update.assert_awaited_once()
    assert result.order_id == "ORD-77"


@pytest.mark.asyncio
async def test_edit_without_genome_test_reuses_prescription(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_id="ORD-78",
        order_name="NIPT-2024-078",
        patient_id="P-9",
        prescription_id="SP-9",
    )

    result = await orchestrator.compose(snapshot)

    gateway.prescriptions.update.assert_not_awaited()
    assert gateway.orders.update.await_args_list[0].args[1].prescription_id == "SP-9"
    assert result.prescription_id == "SP-9"


@pytest.mark.asyncio
async def test_edit_takes_patient_from_prescription(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_id="ORD-79",
        order_name="NIPT-2024-079",
        prescription_id="SP-9",
        genome_test_id="GT-1",
    )

    result = await orchestrator.compose(snapshot)

    gateway.patients.create.assert_not_awaited()
    gateway.patients.update.assert_not_awaited()
    prescription_id, payload = gateway.prescriptions.update.await_args_list[0].args
    assert prescription_id == "SP-9"
    assert payload.patient_id == "P-9"
    assert result.patient_id == "P-9"
    assert result.created_patient_id is None


@pytest.mark.asyncio
async def test_edit_with_patient_name_keeps_prescription_patient(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_id="ORD-80",
        order_name="NIPT-2024-080",
        prescription_id="SP-9",
        genome_test_id="GT-1",
        patient_name="Tran Thi Hoa",
        patient_phone="0912345678",
    )

    result = await orchestrator.compose(snapshot)

    gateway.patients.create.assert_not_awaited()
    assert gateway.patients.update.await_args.args[0] == "P-9"
    assert gateway.prescriptions.update.await_args_list[0].args[1].patient_id == "P-9"
    assert result.created_patient_id is None


@pytest.mark.asyncio
async def test_edit_resends_known_labcodes(orchestrator, gateway):
    snapshot = OrderSnapshot(
        order_id="ORD-81",
        order_name="NIPT-2024-081",
        known_labcodes=["LAB-OLD"],
    )

    await orchestrator.compose(snapshot)

    gateway.orders.update.assert_awaited_once()
    assert gateway.orders.update.await_args.args[1].patient_metadata_ids == ["LAB-OLD"]


@pytest.mark.asyncio
async def test_create_sends_no_labcodes_with_order(orchestrator, gateway, new_patient_snapshot):
    await orchestrator.compose(new_patient_snapshot)

    assert gateway.orders.create.await_args.args[0].patient_metadata_ids is None


@pytest.mark.asyncio
async def test_edit_with_existing_labcode_creates_no_metadata(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_id="ORD-82",
        order_name="NIPT-2024-082",
        prescription_id="SP-9",
        known_labcodes=["LAB-001"],
    )

    run = await orchestrator.commit(CompositionRun(snapshot))
    await orchestrator.run_tail(run)

    gateway.sample_metadata.create.assert_not_awaited()
    assert run.outcome(CompositionStep.CREATE_SAMPLE_METADATA).status == StepStatus.SKIPPED
    assert run.outcome(CompositionStep.ATTACH_LABCODE).status == StepStatus.SKIPPED
    assert run.known_labcodes == ["LAB-001"]


@pytest.mark.asyncio
async def test_edit_without_labcode_creates_metadata(orchestrator, gateway, anchored_prescription):
    gateway.prescriptions.get_by_id.return_value = ok(anchored_prescription)
    snapshot = OrderSnapshot(
        order_id="ORD-83",
        order_name="NIPT-2024-083",
        prescription_id="SP-9",
        sampling_site="Máu tĩnh mạch",
    )

    run = await orchestrator.commit(CompositionRun(snapshot))
    await orchestrator.run_tail(run)

    gateway.sample_metadata.create.assert_awaited_once_with("SP-9", "P-9", "Máu tĩnh mạch")
    assert run.outcome(CompositionStep.ATTACH_LABCODE).status == StepStatus.SUCCEEDED
    assert run.known_labcodes == ["LAB-001"]


# ==================== Helpers ====================

def test_merge_labcodes_preserves_order_without_duplicates():
    assert merge_labcodes(["LAB-1", "LAB-2"], "LAB-1") == ["LAB-1", "LAB-2"]
    assert merge_labcodes(["LAB-1"], "LAB-3") == ["LAB-1", "LAB-3"]
    assert merge_labcodes([], None) == []


def test_split_medications():
    assert split_medications("Aspirin, Metformin\nInsulin") == ["Aspirin", "Metformin", "Insulin"]
    assert split_medications(" , ") is None
    assert split_medications(None) is None


def test_service_matching_uses_aliases_and_ignores_blank_ids():
    assert service_matches(CatalogService(service_id="S1", name="Sản"), ServiceType.REPRODUCTION)
    assert service_matches(CatalogService(service_id="S2", name="Bệnh lý"), ServiceType.DISEASE)
    assert service_matches(CatalogService(service_id="S3", name="EMBRYO"), ServiceType.EMBRYO)
    assert not service_matches(CatalogService(service_id=" ", name="embryo"), ServiceType.EMBRYO)
    assert not service_matches(CatalogService(service_id="S4", name="Phôi"), ServiceType.DISEASE)
