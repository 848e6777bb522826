# tonescrow/routers/v1/endpoints/admin/general.py

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tonescrow.dependencies import get_db
from tonescrow.schemas.admin import DashboardStats
from tonescrow.services import admin as admin_service

router = APIRouter()


@router.get("/dashboard", response_model=DashboardStats)
def get_admin_dashboard(db: Session = Depends(get_db)):
    """[АДМИН] Счетчики пользователей, сделок, выводов и депозитов."""
    return admin_service.get_dashboard_stats(db)
