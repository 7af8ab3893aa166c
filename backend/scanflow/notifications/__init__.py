from .dispatcher import NotificationDispatcher
from .templates import TemplateRegistry, TextTemplate, render_text

__all__ = ["NotificationDispatcher", "TemplateRegistry", "TextTemplate", "render_text"]
