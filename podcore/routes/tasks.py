"""Background task tray and manual site rebuild."""

from fastapi import APIRouter, Depends

from podcore.models.podcasts import DeployResponse, TaskListResponse, TaskRunRead
from podcore.services.deploy_service import DeployTrigger, get_deploy_trigger
from podcore.services.task_registry import TaskRegistry, get_task_registry

router = APIRouter(prefix="/api", tags=["tasks"])


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(
    registry: TaskRegistry = Depends(get_task_registry),
) -> TaskListResponse:
    """Task runs known to this process (lost on restart)."""
    return TaskListResponse(
        tasks=[TaskRunRead.model_validate(run) for run in registry.list_runs()]
    )


@router.post("/deploy", response_model=DeployResponse)
async def trigger_deploy(
    deploy: DeployTrigger = Depends(get_deploy_trigger),
) -> DeployResponse:
    return DeployResponse(triggered=await deploy.notify_change("manual deploy"))
