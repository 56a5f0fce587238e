from datetime import datetime, timezone
from typing import List, Optional
from framework.exceptions.handler import BusinessException, Forbidden
from framework.logging.logger import get_logger
from framework.repository.unit_of_work import UnitOfWork
from framework.security import GuardedContext
from apps.identity.models import ResourceKind
from apps.identity.quota import QuotaEnforcer
from apps.identity.repository import TenantUserRepository
from .models import Project, Task, TaskStatus
from .repository import ProjectRepository, TaskRepository

logger = get_logger("project_service")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProjectService:
    """Projects and their tasks, always inside the guarded tenant."""

    def __init__(self, uow: UnitOfWork, guarded: GuardedContext, quota: Optional[QuotaEnforcer] = None):
        self.uow = uow
        self.guarded = guarded
        self.quota = quota

    @property
    def projects(self) -> ProjectRepository:
        return self.uow.get_repository(ProjectRepository, self.guarded)

    @property
    def tasks(self) -> TaskRepository:
        return self.uow.get_repository(TaskRepository, self.guarded)

    # --- Projects ---

    async def list_projects(self, limit: int = 50, offset: int = 0) -> List[Project]:
        return await self.projects.get_all(limit=limit, offset=offset)

    async def get_project(self, project_id: int) -> Project:
        project = await self.projects.get_by_id(project_id)
        if project is None:
            raise BusinessException("Project not found", status_code=404, code=404)
        return project

    async def create_project(self, name: str, description: Optional[str] = None) -> Project:
        """Consumes the project reservation taken by the gateway."""
        async with self.quota.claim(self.guarded.reservation):
            project = Project(name=name, description=description, owner_id=self.guarded.user_id)
            # The creator becomes the owner of a new project
            self.guarded.require_ownership(lambda ctx: project.owner_id == ctx.user_id)
            try:
                await self.projects.create(project)
                await self.uow.commit()
            except Exception:
                await self.uow.rollback()
                raise

        logger.info(f"Project {project.id} created | Tenant: {project.tenant_id} | Owner: {project.owner_id}")
        return project

    async def update_project(self, project_id: int, changes: dict) -> Project:
        project = await self.get_project(project_id)
        self.guarded.require_ownership(lambda ctx: project.owner_id == ctx.user_id)
        for key in ("name", "description"):
            if key in changes:
                setattr(project, key, changes[key])
        project.updated_at = _now()
        await self.projects.update(project)
        await self.uow.commit()
        return project

    async def delete_project(self, project_id: int) -> None:
        project = await self.get_project(project_id)
        for task in await self.tasks.list_by_project(project.id, limit=None):
            await self.tasks.delete(task.id)
        await self.projects.delete(project.id)
        await self.uow.commit()
        await self.quota.return_capacity(project.tenant_id, ResourceKind.PROJECT)
        logger.info(f"Project {project.id} deleted | Tenant: {project.tenant_id}")

    # --- Tasks ---

    async def list_tasks(self, project_id: int, limit: int = 50, offset: int = 0) -> List[Task]:
        project = await self._linked_project(project_id)
        return await self.tasks.list_by_project(project.id, limit=limit, offset=offset)

    async def create_task(
        self,
        project_id: int,
        title: str,
        description: Optional[str] = None,
        assignee_id: Optional[int] = None,
    ) -> Task:
        project = await self._linked_project(project_id)
        await self._check_assignee(assignee_id)
        if self.guarded.ownership_pending:
            # Limited access: only the project owner or someone already assigned work in it
            assigned = await self.tasks.count(project_id=project.id, assignee_id=self.guarded.user_id) > 0
            self.guarded.require_ownership(lambda ctx: ctx.user_id == project.owner_id or assigned)
        task = Task(
            project_id=project.id,
            title=title,
            description=description,
            owner_id=self.guarded.user_id,
            assignee_id=assignee_id,
        )
        await self.tasks.create(task)
        await self.uow.commit()
        logger.info(f"Task {task.id} created in project {project.id} | Tenant: {task.tenant_id}")
        return task

    async def get_task(self, task_id: int) -> Task:
        task = await self.tasks.get_by_id(task_id)
        if task is None:
            raise BusinessException("Task not found", status_code=404, code=404)
        return task

    async def update_task(self, task_id: int, changes: dict) -> Task:
        task = await self.get_task(task_id)
        self.guarded.require_ownership(
            lambda ctx: ctx.user_id in (task.owner_id, task.assignee_id)
        )
        if "assignee_id" in changes:
            await self._check_assignee(changes["assignee_id"])
            task.assignee_id = changes["assignee_id"]
        if "status" in changes:
            task.status = TaskStatus(changes["status"])
        for key in ("title", "description"):
            if key in changes:
                setattr(task, key, changes[key])
        task.updated_at = _now()
        await self.tasks.update(task)
        await self.uow.commit()
        return task

    async def delete_task(self, task_id: int) -> None:
        task = await self.get_task(task_id)
        await self.tasks.delete(task.id)
        await self.uow.commit()

    async def _linked_project(self, project_id: int) -> Project:
        """A task may only hang off a project of its own tenant."""
        project = await self.projects.get_by_id(project_id)
        if project is None or project.tenant_id != self.guarded.tenant_id:
            raise Forbidden("Project does not belong to this tenant")
        return project

    async def _check_assignee(self, assignee_id: Optional[int]) -> None:
        if assignee_id is None:
            return
        members = self.uow.get_repository(TenantUserRepository, self.guarded)
        if await members.get_by_id(assignee_id) is None:
            raise Forbidden("Assignee is not a member of this tenant")
