"""
UserRepository for database operations on User model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import User


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for the User model.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address.

        Args:
            email: User's email address (case-insensitive search)

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> Optional[User]:
        """
        Retrieve a user by ID.

        Args:
            user_id: User's ID

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_user_by_stripe_customer_id(self, customer_id: str) -> Optional[User]:
        """Retrieve the user owning a Stripe customer."""
        result = await self.db.execute(
            select(User).where(User.stripe_customer_id == customer_id)
        )
        return result.scalars().first()

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new user in the database.

        Args:
            user_data: Dictionary containing user data. Must include:
                - email: str
                - hashed_password: str
                Optional:
                - first_name / last_name: str
                - is_active: bool (defaults to True)
                - created_at: datetime (defaults to now, starts the trial window)

        Returns:
            Created User object
        """
        user = User(
            email=user_data["email"].lower(),
            hashed_password=user_data["hashed_password"],
            first_name=user_data.get("first_name"),
            last_name=user_data.get("last_name"),
            is_active=user_data.get("is_active", True),
        )
        if user_data.get("created_at") is not None:
            user.created_at = user_data["created_at"]
        self.db.add(user)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(user)  # Refresh to get the generated ID
        return user

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"stripe_customer_id": "cus_123"})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await self.db.flush()
        await self.db.refresh(user)
        return user
