from task_dispatcher.domain.task import TaskType

from .protocol import TaskHandler
from .builtin import (
    ComputationHandler,
    SimulatedHandler,
    data_analysis_handler,
    database_backup_handler,
    default_handler,
    email_handler,
    file_upload_handler,
    image_processing_handler,
    notification_handler,
    report_generation_handler,
)
from .http import HttpCallPayload, HttpRequestHandler


def build_default_registry(time_scale: float = 1.0):
    """
    Registry with a handler for every built-in task type.
    """
    from task_dispatcher.handler_registry import HandlerRegistry

    registry = HandlerRegistry(default_handler=default_handler(time_scale))
    registry.register(TaskType.EMAIL, email_handler(time_scale))
    registry.register(TaskType.IMAGE_PROCESSING, image_processing_handler(time_scale))
    registry.register(TaskType.DATA_ANALYSIS, data_analysis_handler(time_scale))
    registry.register(TaskType.REPORT_GENERATION, report_generation_handler(time_scale))
    registry.register(TaskType.NOTIFICATION, notification_handler(time_scale))
    registry.register(TaskType.FILE_UPLOAD, file_upload_handler(time_scale))
    registry.register(TaskType.DATABASE_BACKUP, database_backup_handler(time_scale))
    registry.register(TaskType.COMPUTATION, ComputationHandler(time_scale))
    registry.register(TaskType.HTTP_REQUEST, HttpRequestHandler(), schema=HttpCallPayload)
    return registry


__all__ = [
    "TaskHandler", "SimulatedHandler", "ComputationHandler", "HttpRequestHandler",
    "HttpCallPayload", "build_default_registry",
]
