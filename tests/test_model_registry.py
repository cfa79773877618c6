from pathlib import Path

import pytest

from vision_dashboard.core.errors import InUseError, ModelNotFoundError, ModelNotReadyError
from vision_dashboard.core.model_registry import ModelRegistry
from vision_dashboard.core.types import Model, ModelStatus


def _active_ids(registry: ModelRegistry) -> list[str]:
    return [m.id for m in registry.list_models() if m.status is ModelStatus.ACTIVE]


def test_seed_catalog_has_exactly_one_active_model(registry):
    assert registry.size == 4
    assert _active_ids(registry) == ['yolov8n']


def test_set_active_switches_all_others_off(registry):
    activated = registry.set_active('faster-rcnn')

    assert activated.status is ModelStatus.ACTIVE
    assert activated.last_used_at is not None
    assert _active_ids(registry) == ['faster-rcnn']


def test_removing_active_model_fails_and_others_succeed(registry):
    with pytest.raises(InUseError):
        registry.remove('yolov8n')

    removed = registry.remove('yolov8m')

    assert removed.id == 'yolov8m'
    assert registry.size == 3
    with pytest.raises(ModelNotFoundError):
        registry.get('yolov8m')


def test_upload_stores_weights_and_registers_inactive_model(registry, tmp_path):
    model = registry.upload('custom.pt', b'weights', name='Custom-Model', framework='PyTorch')

    assert model.status is ModelStatus.INACTIVE
    assert model.size_bytes == 7
    assert model.id.startswith('custom-model-')
    assert Path(model.weights_path).read_bytes() == b'weights'
    assert model.sha256 is not None

    registry.remove(model.id)
    assert not Path(model.weights_path).exists()


def test_loading_model_cannot_be_activated(registry):
    registry.add(Model(id='pending', name='Pending', version='v0', status=ModelStatus.LOADING))

    with pytest.raises(ModelNotReadyError):
        registry.set_active('pending')
    assert _active_ids(registry) == ['yolov8n']


def test_empty_catalog_activates_first_added_model(tmp_path):
    registry = ModelRegistry(None, models_dir=str(tmp_path))

    assert registry.active() is None
    registry.add(Model(id='a', name='A', version='v1'))
    registry.add(Model(id='b', name='B', version='v1', status=ModelStatus.ACTIVE))

    assert _active_ids(registry) == ['a']
