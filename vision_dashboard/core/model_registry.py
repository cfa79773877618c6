import json
import logging
import re
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from vision_dashboard.core.errors import (
    DashboardError,
    InUseError,
    ModelNotFoundError,
    ModelNotReadyError,
    ResourceError,
    ResourceErrorKind,
)
from vision_dashboard.core.types import Model, ModelStatus
from vision_dashboard.utils.model_fingerprint import sha256_bytes, sha256_file

logger = logging.getLogger('vision_dashboard.models')


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _slugify(value: str) -> str:
    lowered = value.strip().lower()
    cleaned = re.sub(r'[^a-z0-9]+', '-', lowered)
    return cleaned.strip('-') or 'model'


def _parse_timestamp(raw) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace('Z', '+00:00'))
    except ValueError:
        return None


def _parse_status(raw) -> ModelStatus:
    try:
        return ModelStatus(str(raw or 'inactive').strip().lower())
    except ValueError:
        return ModelStatus.INACTIVE


class ModelRegistry:
    """In-memory catalog of detector models.

    Exactly one model is active at steady state: ``set_active`` flips the new
    model on and every other model off in a single pass, and the active model
    cannot be removed.
    """

    def __init__(self, path: str | None = None, models_dir: str = 'model_store', max_model_bytes: int = 512 * 1024 * 1024):
        self._path = self._resolve_path(path) if path else None
        self._models_dir = Path(models_dir)
        self._max_model_bytes = max_model_bytes
        self._models: dict[str, Model] = {}
        for model in self._load_items(self._path):
            self._models[model.id] = model
        self._ensure_single_active()

    def _resolve_path(self, path: str) -> Path:
        candidate = Path(path)
        if candidate.exists() or candidate.is_absolute():
            return candidate
        module_root = Path(__file__).resolve().parents[1]
        fallback = module_root / 'data' / 'models.json'
        if fallback.exists():
            return fallback
        return candidate

    def _load_items(self, path: Path | None) -> list[Model]:
        if path is None or not path.exists():
            return []
        raw = json.loads(path.read_text(encoding='utf-8'))
        if not isinstance(raw, list):
            return []

        models: list[Model] = []
        for row in raw:
            if not isinstance(row, dict):
                continue
            name = str(row.get('name') or '').strip()
            if not name:
                continue
            models.append(
                Model(
                    id=str(row.get('id') or _slugify(name)).strip(),
                    name=name,
                    version=str(row.get('version') or 'v1.0.0').strip(),
                    size_bytes=int(row.get('size_bytes') or 0),
                    accuracy=float(row['accuracy']) if row.get('accuracy') is not None else None,
                    throughput_fps=float(row['throughput_fps']) if row.get('throughput_fps') is not None else None,
                    framework=row.get('framework'),
                    status=_parse_status(row.get('status')),
                    last_used_at=_parse_timestamp(row.get('last_used_at')),
                    weights_path=row.get('weights_path'),
                    sha256=sha256_file(row.get('weights_path')),
                )
            )
        return models

    def _ensure_single_active(self) -> None:
        active = [m for m in self._models.values() if m.status is ModelStatus.ACTIVE]
        if len(active) == 1:
            return
        if len(active) > 1:
            logger.warning('catalog lists several active models ids=%s keeping=%s', [m.id for m in active], active[0].id)
            self._activate(active[0].id, touch=False)
            return
        ready = [m for m in self._models.values() if m.status is ModelStatus.INACTIVE]
        if ready:
            self._activate(ready[0].id, touch=False)

    @property
    def size(self) -> int:
        return len(self._models)

    def list_models(self) -> list[Model]:
        return list(self._models.values())

    def get(self, model_id: str) -> Model:
        model = self._models.get(model_id)
        if model is None:
            raise ModelNotFoundError(model_id)
        return model

    def active(self) -> Model | None:
        return next((m for m in self._models.values() if m.status is ModelStatus.ACTIVE), None)

    def _activate(self, model_id: str, touch: bool = True) -> Model:
        now = _now()
        for key, model in self._models.items():
            if key == model_id:
                self._models[key] = replace(model, status=ModelStatus.ACTIVE, last_used_at=now if touch else model.last_used_at)
            elif model.status is ModelStatus.ACTIVE:
                self._models[key] = replace(model, status=ModelStatus.INACTIVE)
        return self._models[model_id]

    def set_active(self, model_id: str) -> Model:
        model = self.get(model_id)
        if model.status is ModelStatus.LOADING:
            raise ModelNotReadyError(model_id)
        activated = self._activate(model_id)
        logger.info('model activated id=%s name=%s', activated.id, activated.name)
        return activated

    def touch(self, model_id: str) -> None:
        model = self.get(model_id)
        self._models[model_id] = replace(model, last_used_at=_now())

    def add(self, model: Model) -> Model:
        if model.id in self._models:
            raise DashboardError('MODEL_EXISTS', f'A model with id={model.id} already exists.', status_code=409)
        if model.status is ModelStatus.ACTIVE:
            model = replace(model, status=ModelStatus.INACTIVE)
        self._models[model.id] = model
        if self.active() is None and model.status is ModelStatus.INACTIVE:
            self._activate(model.id, touch=False)
        return self._models[model.id]

    def upload(
        self,
        filename: str,
        payload: bytes,
        name: str | None = None,
        version: str = 'v1.0.0',
        framework: str | None = None,
    ) -> Model:
        if not payload:
            raise ResourceError(ResourceErrorKind.EMPTY_INPUT, 'Missing model upload (field name: file).')
        if len(payload) > self._max_model_bytes:
            raise ResourceError(ResourceErrorKind.INPUT_TOO_LARGE, f'Model too large. Max {self._max_model_bytes} bytes.')

        display_name = (name or Path(filename).stem or 'Custom-Model').strip()
        model_id = f'{_slugify(display_name)}-{uuid.uuid4().hex[:8]}'
        suffix = Path(filename).suffix.lower() or '.bin'
        target = self._models_dir / f'{model_id}{suffix}'
        model = self.add(Model(id=model_id, name=display_name, version=version, framework=framework, status=ModelStatus.LOADING))

        try:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError:
            self._models.pop(model.id, None)
            raise

        self._models[model.id] = replace(
            model,
            status=ModelStatus.INACTIVE,
            size_bytes=len(payload),
            weights_path=str(target),
            sha256=sha256_bytes(payload),
            last_used_at=_now(),
        )
        if self.active() is None:
            self._activate(model.id, touch=False)
        logger.info('model uploaded id=%s name=%s bytes=%s path=%s', model.id, display_name, len(payload), target)
        return self._models[model.id]

    def remove(self, model_id: str) -> Model:
        model = self.get(model_id)
        if model.status is ModelStatus.ACTIVE:
            raise InUseError(model_id)
        del self._models[model_id]
        if model.weights_path and Path(model.weights_path).parent == self._models_dir:
            Path(model.weights_path).unlink(missing_ok=True)
        logger.info('model removed id=%s name=%s', model.id, model.name)
        return model
