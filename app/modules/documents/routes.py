# app/modules/documents/routes.py
from typing import List, Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from sqlalchemy.orm import Session, sessionmaker

from app.db.deps import (
    get_current_active_user,
    get_db,
    get_edge_function_client,
    get_session_factory,
    get_storage_client,
)
from app.integrations.edge_functions.client import EdgeFunctionClient
from app.integrations.storage import StorageClient
from app.modules.auth.models import User
from app.modules.documents.dispatcher import ProcessingDispatcher
from app.modules.documents.retry import RetryService
from app.modules.documents.service import DocumentService, read_upload_body
from app.schemas.document import (
    DocumentRead,
    DocumentStatusRead,
    RetryRequest,
    RetryResult,
    UploadAccepted,
)

router = APIRouter(
    prefix="/documents",
    tags=["documents"],
    dependencies=[Depends(get_current_active_user)],
)


def get_dispatcher(
    session_factory: sessionmaker = Depends(get_session_factory),
    edge_client: EdgeFunctionClient = Depends(get_edge_function_client),
) -> ProcessingDispatcher:
    return ProcessingDispatcher(session_factory, edge_client)


@router.post(
    "",
    response_model=UploadAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def upload_document(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    base_class_id: Optional[UUID] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    dispatcher: ProcessingDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(get_current_active_user),
):
    """Upload a document and queue it for processing."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    body = read_upload_body(file.file, file.size)
    document = DocumentService(db, storage).upload_document(
        actor=current_user,
        file_name=file.filename,
        content_type=file.content_type,
        body=body,
        base_class_id=base_class_id,
    )

    background_tasks.add_task(dispatcher.dispatch, document.id)
    return UploadAccepted(document_id=document.id)


@router.get("", response_model=List[DocumentRead])
def list_documents(
    base_class_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    current_user: User = Depends(get_current_active_user),
):
    return DocumentService(db, storage).list_documents(current_user, base_class_id)


@router.post("/retry", response_model=RetryResult)
async def retry_documents(
    payload: RetryRequest,
    db: Session = Depends(get_db),
    edge_client: EdgeFunctionClient = Depends(get_edge_function_client),
    current_user: User = Depends(get_current_active_user),
):
    """Re-queue failed documents of the caller's organisation."""
    if current_user.organisation_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not associated with an organisation",
        )
    result = await RetryService(db, edge_client).retry_failed_documents(
        payload.document_ids, organisation_id=current_user.organisation_id
    )
    return RetryResult(**result)


@router.get("/{document_id}/status", response_model=DocumentStatusRead)
def get_document_status(
    document_id: UUID,
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    current_user: User = Depends(get_current_active_user),
):
    return DocumentStatusRead(
        **DocumentService(db, storage).get_status(current_user, document_id)
    )


@router.post("/{document_id}/cancel", response_model=DocumentRead)
def cancel_document(
    document_id: UUID,
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    current_user: User = Depends(get_current_active_user),
):
    return DocumentService(db, storage).cancel_document(current_user, document_id)


@router.delete("/{document_id}")
def delete_document(
    document_id: UUID,
    base_class_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    storage: StorageClient = Depends(get_storage_client),
    current_user: User = Depends(get_current_active_user),
):
    """Delete a document and its stored file."""
    DocumentService(db, storage).delete_document(current_user, document_id, base_class_id)
    return {"success": True, "message": "Document deleted successfully"}
