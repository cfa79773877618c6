from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    provider: str = 'dummy'
    default_model_id: str = 'yolov8n'
    remote_base_url: str = 'http://127.0.0.1:5000'
    remote_predict_path: str = '/model/predict'
    remote_timeout_ms: int = 12000
    conf_threshold: float = 0.35
    model_catalog_path: str = 'vision_dashboard/data/models.json'
    models_dir: str = 'model_store'
    max_model_bytes: int = 512 * 1024 * 1024
    max_image_bytes: int = 8 * 1024 * 1024
    max_video_bytes: int = 256 * 1024 * 1024
    camera_index: int = 0
    camera_width: int = 1280
    camera_height: int = 720
    realtime_interval_s: float = 1.0
    realtime_history_size: int = 20
    video_frame_stride: int = 1
    video_tick_interval_s: float = 0.0
    host: str = '127.0.0.1'
    port: int = 8001
    log_level: str = 'INFO'
    version: str = '1.0.0'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
