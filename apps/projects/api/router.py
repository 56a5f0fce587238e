from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from framework.permissions import Action
from framework.repository.unit_of_work import UnitOfWork
from framework.response import ResponseModel
from framework.security import GuardedContext
from apps.identity.gateway import get_quota_enforcer, get_uow, guard
from apps.identity.models import ResourceKind
from apps.identity.quota import QuotaEnforcer
from ..models import TaskStatus
from ..service import ProjectService

# Mounted under /api/v1/tenants/{tenant_id}
router = APIRouter()

class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)

class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)

class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    assignee_id: Optional[int] = None

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TaskStatus] = None
    assignee_id: Optional[int] = None


def project_service(action: Action, resource_kind: Optional[ResourceKind] = None):
    """Dependency: ProjectService bound to the context the gateway issued for `action`."""
    def dependency(
        guarded: GuardedContext = Depends(guard(action, resource_kind)),
        uow: UnitOfWork = Depends(get_uow),
        quota: QuotaEnforcer = Depends(get_quota_enforcer),
    ) -> ProjectService:
        return ProjectService(uow, guarded, quota)
    return dependency


@router.get("/{tenant_id}/projects")
async def list_projects(
    tenant_id: int,
    limit: int = 50,
    offset: int = 0,
    service: ProjectService = Depends(project_service(Action.PROJECT_READ))
):
    return ResponseModel.success(data=await service.list_projects(limit=limit, offset=offset))

@router.post("/{tenant_id}/projects")
async def create_project(
    tenant_id: int,
    payload: ProjectCreate,
    service: ProjectService = Depends(project_service(Action.PROJECT_CREATE, ResourceKind.PROJECT))
):
    project = await service.create_project(payload.name, payload.description)
    return ResponseModel.success(data=project)

@router.get("/{tenant_id}/projects/{project_id}")
async def get_project(
    tenant_id: int,
    project_id: int,
    service: ProjectService = Depends(project_service(Action.PROJECT_READ))
):
    return ResponseModel.success(data=await service.get_project(project_id))

@router.patch("/{tenant_id}/projects/{project_id}")
async def update_project(
    tenant_id: int,
    project_id: int,
    payload: ProjectUpdate,
    service: ProjectService = Depends(project_service(Action.PROJECT_UPDATE))
):
    project = await service.update_project(project_id, payload.model_dump(exclude_unset=True))
    return ResponseModel.success(data=project)

@router.delete("/{tenant_id}/projects/{project_id}")
async def delete_project(
    tenant_id: int,
    project_id: int,
    service: ProjectService = Depends(project_service(Action.PROJECT_DELETE))
):
    await service.delete_project(project_id)
    return ResponseModel.success(data={"id": project_id})

@router.get("/{tenant_id}/projects/{project_id}/tasks")
async def list_tasks(
    tenant_id: int,
    project_id: int,
    limit: int = 50,
    offset: int = 0,
    service: ProjectService = Depends(project_service(Action.TASK_READ))
):
    return ResponseModel.success(data=await service.list_tasks(project_id, limit=limit, offset=offset))

@router.post("/{tenant_id}/projects/{project_id}/tasks")
async def create_task(
    tenant_id: int,
    project_id: int,
    payload: TaskCreate,
    service: ProjectService = Depends(project_service(Action.TASK_CREATE))
):
    task = await service.create_task(
        project_id,
        payload.title,
        description=payload.description,
        assignee_id=payload.assignee_id
    )
    return ResponseModel.success(data=task)

@router.get("/{tenant_id}/tasks/{task_id}")
async def get_task(
    tenant_id: int,
    task_id: int,
    service: ProjectService = Depends(project_service(Action.TASK_READ))
):
    return ResponseModel.success(data=await service.get_task(task_id))

@router.patch("/{tenant_id}/tasks/{task_id}")
async def update_task(
    tenant_id: int,
    task_id: int,
    payload: TaskUpdate,
    service: ProjectService = Depends(project_service(Action.TASK_UPDATE))
):
    task = await service.update_task(task_id, payload.model_dump(exclude_unset=True))
    return ResponseModel.success(data=task)

@router.delete("/{tenant_id}/tasks/{task_id}")
async def delete_task(
    tenant_id: int,
    task_id: int,
    service: ProjectService = Depends(project_service(Action.TASK_DELETE))
):
    await service.delete_task(task_id)
    return ResponseModel.success(data={"id": task_id})
