# src/mobsf_proxy/api/routes.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile

from mobsf_proxy.api.schemas import (
    HashRequest,
    RecentScans,
    SavedJsonReport,
    SavedReportList,
    ScanRequest,
    ScanStarted,
    UploadResult,
)
from mobsf_proxy.engine.cache_store import validate_job_id
from mobsf_proxy.errors import ValidationError
from mobsf_proxy.services import Services

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.post(
    "/api/upload",
    summary="Upload an app binary to the scanning engine",
    response_description="Job identifier (hash) of the uploaded binary",
    tags=["Scans"],
    response_model=UploadResult,
    responses={
        422: {"description": "No file provided"},
        502: {"description": "Scanning engine unavailable"},
    },
)
async def upload(file: Optional[UploadFile] = File(None), services: Services = Depends(get_services)):
    if file is None or not file.filename:
        raise ValidationError("No file provided")
    content = await file.read()
    job_id = await services.gateway.upload(file.filename, content)
    return {"hash": job_id, "file_name": file.filename}


@router.post(
    "/api/scan",
    summary="Trigger a scan and watch it until the report is ready",
    tags=["Scans"],
    response_model=ScanStarted,
    responses={
        422: {"description": "hash missing"},
        502: {"description": "Scanning engine unavailable"},
    },
)
async def trigger_scan(request: ScanRequest, services: Services = Depends(get_services)):
    job_id = validate_job_id(request.hash)
    result = await services.gateway.trigger_scan(job_id, rescan=request.re_scan)
    status = None
    if request.watch:
        services.tracker.watch(job_id)
        status = services.tracker.get_status(job_id)
    return {"hash": job_id, "watching": request.watch, "status": status, "result": result}


@router.post("/api/scan_logs", summary="Raw scan logs from the engine", tags=["Scans"])
async def scan_logs(request: HashRequest, services: Services = Depends(get_services)):
    job_id = validate_job_id(request.hash)
    logs = await services.gateway.fetch_logs(job_id)
    return {"logs": [
        {"timestamp": entry.timestamp, "status": entry.status, "exception": entry.exception}
        for entry in logs
    ]}


@router.get(
    "/api/scan/{job_id}/status",
    summary="Status and progress estimate of a watched scan",
    tags=["Scan Jobs"],
    responses={404: {"description": "Job is not being watched"}},
)
async def get_scan_status(job_id: str, response: Response, services: Services = Depends(get_services)):
    status = services.tracker.get_status(job_id)
    if status["status"] == "not_found":
        response.status_code = 404
    return status


@router.delete("/api/scan/{job_id}/watch", summary="Stop watching a scan", tags=["Scan Jobs"])
async def stop_watch(job_id: str, services: Services = Depends(get_services)):
    stopped = services.tracker.stop(job_id)
    if not stopped:
        return {"success": False, "error": "Job not found"}
    return {"success": True, "message": f"Stopped watching {job_id}."}


@router.get("/api/watches", summary="All scans watched by this process", tags=["Scan Jobs"])
async def list_watches(services: Services = Depends(get_services)):
    return services.tracker.list_jobs()


@router.get("/api/report_json", summary="JSON report straight from the engine (not cached)", tags=["Reports"])
async def report_json(hash: Optional[str] = Query(None), services: Services = Depends(get_services)):
    return await services.report_service.fetch_live(hash)


@router.get(
    "/api/report_json/save",
    summary="JSON report, served from cache or fetched and cached",
    tags=["Reports"],
    response_model=SavedJsonReport,
)
async def save_json_report(hash: Optional[str] = Query(None), services: Services = Depends(get_services)):
    report = await services.report_service.get_report(hash, "json")
    return {
        "cached": report.cached,
        "path": report.storage_path,
        "retrieved_at": report.retrieved_at.isoformat() if report.retrieved_at else None,
        "data": report.payload,
    }


@router.get(
    "/api/download_pdf/save",
    summary="PDF report, served from cache or fetched and cached",
    tags=["Reports"],
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}},
)
async def save_pdf_report(hash: Optional[str] = Query(None), services: Services = Depends(get_services)):
    report = await services.report_service.get_report(hash, "pdf")
    return Response(
        content=report.payload,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{report.job_id}.pdf"',
            "X-Report-Cached": "true" if report.cached else "false",
        },
    )


@router.get("/api/reports", summary="Reports saved in the local cache", tags=["Reports"],
            response_model=SavedReportList)
def list_saved_reports(services: Services = Depends(get_services)):
    reports = services.store.list_reports()
    return {"count": len(reports), "reports": reports}


@router.get("/api/scans", summary="Recent scans known to the engine", tags=["Scans"], response_model=RecentScans)
async def recent_scans(page: int = Query(1, ge=1), page_size: int = Query(10, ge=1, le=100),
                       services: Services = Depends(get_services)):
    return {"content": await services.gateway.list_recent_jobs(page, page_size)}
