import logging
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..audit import log
from ..db import get_db
from ..deps import get_security_analyzer, require_admin
from ..models import KycSubmission, User
from ..schemas import (
    KycDetail,
    KycDetailOut,
    KycListItem,
    KycListOut,
    KycStatusOut,
    KycStatusUpdateIn,
    KycSubmitOut,
    Pagination,
)
from ..services import kyc_service
from ..services.notifications import notify_submission
from ..services.security_analysis import SecurityAnalyzer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/kyc", tags=["kyc"])

FILE_TYPES = {
    "license": "driver_license_file_path",
    "video": "verification_video_path",
}


@router.post("/submit", response_model=KycSubmitOut, status_code=201)
async def submit(
    request: Request,
    background: BackgroundTasks,
    full_name: str = Form(..., alias="fullName"),
    email: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    state: Optional[str] = Form(None),
    country: Optional[str] = Form(None),
    postal_code: Optional[str] = Form(None, alias="postalCode"),
    poker_platform: Optional[str] = Form(None, alias="pokerPlatform"),
    player_id: Optional[str] = Form(None, alias="playerId"),
    device_fingerprint: Optional[str] = Form(None, alias="deviceFingerprint"),
    geolocation_data: Optional[str] = Form(None, alias="geolocationData"),
    device_specs: Optional[str] = Form(None, alias="deviceSpecs"),
    driver_license: Optional[UploadFile] = File(None, alias="driverLicense"),
    verification_video: Optional[UploadFile] = File(None, alias="verificationVideo"),
    db: Session = Depends(get_db),
    analyzer: SecurityAnalyzer = Depends(get_security_analyzer),
):
    if not full_name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="fullName is required")

    form = kyc_service.KycForm(
        full_name=full_name.strip(),
        email=email,
        phone=phone,
        address=address,
        city=city,
        state=state,
        country=country,
        postal_code=postal_code,
        poker_platform=poker_platform,
        player_id=player_id,
        device_fingerprint=device_fingerprint,
        geolocation=kyc_service.parse_json_field(geolocation_data, "geolocationData"),
        device_specs=kyc_service.parse_json_field(device_specs, "deviceSpecs"),
    )

    # ficheiros e BD são bloqueantes: correm no threadpool, só a análise de IP fica no loop
    dl_path = video_path = None
    try:
        dl_path = await run_in_threadpool(kyc_service.save_upload, driver_license, "driverLicense")
        video_path = await run_in_threadpool(kyc_service.save_upload, verification_video, "verificationVideo")
    except kyc_service.UploadRejected as e:
        await run_in_threadpool(kyc_service.discard_files, dl_path, video_path)
        raise HTTPException(status_code=e.status_code, detail=str(e))

    ip = kyc_service.client_ip(request)
    report = await analyzer.analyze(form.risk_input(ip))

    try:
        snapshot = await run_in_threadpool(
            kyc_service.store_submission, db, form, ip, dl_path, video_path, report
        )
    except Exception:
        await run_in_threadpool(db.rollback)
        await run_in_threadpool(kyc_service.discard_files, dl_path, video_path)
        logger.exception("KYC submission failed")
        raise HTTPException(status_code=500, detail="Failed to submit KYC verification")

    background.add_task(notify_submission, snapshot, report)

    return KycSubmitOut(message="KYC verification submitted successfully", submissionId=snapshot["submission_id"])


@router.get("/status/{submission_id}", response_model=KycStatusOut)
def submission_status(submission_id: str, db: Session = Depends(get_db)):
    sub = kyc_service.get_by_submission_id(db, submission_id)
    if not sub:
        raise HTTPException(status_code=404, detail="Submission not found")
    return sub


@router.get("/submissions", response_model=KycListOut)
def list_submissions(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    if status_filter and status_filter not in kyc_service.VALID_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status value")

    rows, total = kyc_service.list_submissions(db, status_filter, page, limit)
    return KycListOut(
        data=[KycListItem.model_validate(r) for r in rows],
        pagination=Pagination(total=total, page=page, limit=limit, totalPages=(total + limit - 1) // limit),
    )


def _detail(sub: KycSubmission) -> KycDetail:
    d = KycDetail.model_validate(sub)
    return d.model_copy(
        update={
            "has_driver_license": bool(sub.driver_license_file_path),
            "has_verification_video": bool(sub.verification_video_path),
        }
    )


@router.get("/submission/{kyc_id}", response_model=KycDetailOut)
def get_submission(kyc_id: int, db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    sub = db.get(KycSubmission, kyc_id)
    if not sub:
        raise HTTPException(status_code=404, detail="Submission not found")
    return KycDetailOut(data=_detail(sub))


@router.put("/submission/{kyc_id}/status", response_model=KycDetailOut)
def update_submission_status(
    kyc_id: int,
    payload: KycStatusUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        sub = kyc_service.update_status(db, kyc_id, payload.status, payload.verification_notes, admin.username)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not sub:
        raise HTTPException(status_code=404, detail="Submission not found")

    log(db, "KYC_STATUS_UPDATED", actor=admin, target_ref=sub.submission_id, meta={"status": sub.status})
    return KycDetailOut(data=_detail(sub))


@router.get("/file/{submission_id}/{file_type}")
def download_file(
    submission_id: str,
    file_type: str,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    attr = FILE_TYPES.get(file_type)
    if not attr:
        raise HTTPException(status_code=400, detail="Invalid file type")

    sub = kyc_service.get_by_submission_id(db, submission_id)
    if not sub:
        raise HTTPException(status_code=404, detail="Submission not found")

    path = getattr(sub, attr)
    if not path or not Path(path).is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, filename=Path(path).name)
