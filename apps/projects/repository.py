"""Project module repository implementations (all tenant-scoped)."""

from typing import List
from framework.repository.scoped import TenantScopedRepository
from .models import Project, Task


class ProjectRepository(TenantScopedRepository[Project]):
    def __init__(self, session, guarded):
        super().__init__(session, Project, guarded)


class TaskRepository(TenantScopedRepository[Task]):
    def __init__(self, session, guarded):
        super().__init__(session, Task, guarded)

    async def list_by_project(self, project_id: int, limit: int = 50, offset: int = 0) -> List[Task]:
        return await self.find_all(limit=limit, offset=offset, project_id=project_id)

    async def count_by_project(self, project_id: int) -> int:
        return await self.count(project_id=project_id)
