from .model_catalog import ModelCatalog, ModelInfo

__all__ = ["ModelCatalog", "ModelInfo"]
