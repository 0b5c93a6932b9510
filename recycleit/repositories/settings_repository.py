"""
Settings repository - Data access layer for the Settings model.
"""
from sqlalchemy.orm import Session
from recycleit.models import Settings


class SettingsRepository:
    """Repository for Settings data access"""

    @staticmethod
    def get(db: Session) -> Settings:
        """
        Get settings (creates with defaults if not exists).

        Returns:
            Settings object
        """
        settings = db.query(Settings).first()
        if not settings:
            settings = Settings()
            db.add(settings)
            db.commit()
            db.refresh(settings)
        return settings

    @staticmethod
    def update(db: Session, settings: Settings) -> Settings:
        """Persist changed settings"""
        db.commit()
        db.refresh(settings)
        return settings
