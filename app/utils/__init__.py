from app.utils.masking import mask_email

__all__ = ["mask_email"]
