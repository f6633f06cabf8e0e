# nlcube/routers/subjects.py
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status

from nlcube.deps import SUBJECT_COOKIE, get_service
from nlcube.core.models import SubjectInfo
from nlcube.core.query_service import QueryService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/subjects", tags=["subjects"])


@router.get("", response_model=List[str], summary="List registered subjects")
async def list_subjects(svc: QueryService = Depends(get_service)):
    return svc.list_subjects()


@router.post("/{name}", status_code=status.HTTP_201_CREATED, response_model=SubjectInfo,
             summary="Create a subject and its store")
async def create_subject(name: str, svc: QueryService = Depends(get_service)):
    subject = svc.create_subject(name)
    return SubjectInfo(name=subject.name, storage_path=str(subject.storage_path), attached=subject.attached)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a subject and its data")
async def delete_subject(name: str, svc: QueryService = Depends(get_service)):
    await svc.delete_subject(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{name}/select", summary="Make a subject current for this client")
async def select_subject(name: str, response: Response, svc: QueryService = Depends(get_service)):
    ctx = svc.select_current_subject(name)
    response.set_cookie(SUBJECT_COOKIE, ctx.current_subject, httponly=True, samesite="lax")
    return {"current_subject": ctx.current_subject}
