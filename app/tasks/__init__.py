from app.tasks.installments import mark_overdue_installments

__all__ = [
    "mark_overdue_installments",
]
