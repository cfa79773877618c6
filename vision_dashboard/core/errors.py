from enum import Enum


class DashboardError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class ResourceErrorKind(str, Enum):
    DEVICE_UNAVAILABLE = 'DEVICE_UNAVAILABLE'
    DEVICE_BUSY = 'DEVICE_BUSY'
    EMPTY_INPUT = 'EMPTY_INPUT'
    UNSUPPORTED_MEDIA = 'UNSUPPORTED_MEDIA'
    INPUT_TOO_LARGE = 'INPUT_TOO_LARGE'
    DECODE_FAILED = 'DECODE_FAILED'


_RESOURCE_STATUS = {
    ResourceErrorKind.DEVICE_UNAVAILABLE: 503,
    ResourceErrorKind.DEVICE_BUSY: 409,
    ResourceErrorKind.INPUT_TOO_LARGE: 413,
    ResourceErrorKind.UNSUPPORTED_MEDIA: 415,
}


class ResourceError(DashboardError):
    def __init__(self, kind: ResourceErrorKind, message: str, details: dict | None = None):
        super().__init__(kind.value, message, status_code=_RESOURCE_STATUS.get(kind, 400), details=details)
        self.kind = kind


class ProcessingError(DashboardError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__('PROCESSING_FAILED', message, status_code=502, details=details)


class InUseError(DashboardError):
    def __init__(self, model_id: str):
        super().__init__('MODEL_IN_USE', f'Model {model_id!r} is active and cannot be deleted.', status_code=409)
        self.model_id = model_id


class ModelNotFoundError(DashboardError):
    def __init__(self, model_id: str):
        super().__init__('MODEL_NOT_FOUND', f'No model found for id={model_id}', status_code=404)
        self.model_id = model_id


class ModelNotReadyError(DashboardError):
    def __init__(self, model_id: str):
        super().__init__('MODEL_NOT_READY', f'Model {model_id!r} is still loading.', status_code=409)
        self.model_id = model_id


class InvalidTransitionError(DashboardError):
    def __init__(self, command: str, state: str, modality: str):
        super().__init__(
            'INVALID_TRANSITION',
            f'Cannot {command} a {modality} session in state {state}.',
            status_code=409,
            details={'command': command, 'state': state, 'modality': modality},
        )


class ModelSwitchRejectedError(DashboardError):
    def __init__(self, model_id: str, busy: list[str]):
        super().__init__(
            'MODEL_SWITCH_REJECTED',
            f'Cannot switch to model {model_id!r} while detection is running ({", ".join(busy)}).',
            status_code=409,
            details={'busy_sessions': busy},
        )
