"""
UserRepository for database operations on User model
"""

from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_, case, func
from database_models import User, Subscription


# Mirror columns that describe an in-flight trial
TRIAL_MARKERS = {"trial_started_at": None, "trial_ends_at": None}


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

    async def list_users(self) -> List[User]:
        """Return every active account, oldest first."""
        result = await self.db.execute(
            select(User).where(User.is_active.is_(True)).order_by(User.id)
        )
        return list(result.scalars().all())

    async def find_stale_mirrors(self, limit: int) -> List[Tuple[User, Subscription]]:
        """
        Users whose mirror disagrees with their latest subscription.

        The latest subscription is the newest trialing or active one, else the
        newest of any status. A mirror is stale when it is marked active while
        that subscription expired, or when the subscription is active and the
        mirror is inactive, still carries trial markers, or links another row.
        """
        ranked = select(
            Subscription.id.label("id"),
            func.row_number().over(
                partition_by=Subscription.user_id,
                order_by=(
                    case((Subscription.status.in_(("trialing", "active")), 0), else_=1),
                    Subscription.created_at.desc(),
                    Subscription.id.desc(),
                ),
            ).label("rank"),
        ).subquery()

        result = await self.db.execute(
            select(User, Subscription)
            .join(Subscription, Subscription.user_id == User.id)
            .join(ranked, and_(ranked.c.id == Subscription.id, ranked.c.rank == 1))
            .where(
                or_(
                    and_(Subscription.status == "expired", User.subscription_is_active.is_(True)),
                    and_(
                        Subscription.status == "active",
                        or_(
                            User.subscription_is_active.is_(False),
                            User.trial_ends_at.is_not(None),
                            User.subscription_id.is_distinct_from(Subscription.id),
                        ),
                    ),
                )
            )
            .order_by(User.id)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new user in the database.

        Args:
            user_data: Dictionary containing user data. Must include:
                - email: str
                - hashed_password: str
                Optional:
                - name: str
                - is_active: bool (defaults to True)

        Returns:
            Created User object
        """
        user = User(
            email=user_data["email"].lower(),
            hashed_password=user_data["hashed_password"],
            name=user_data.get("name"),
            is_active=user_data.get("is_active", True),
        )
        self.db.add(user)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(user)  # Refresh to get the generated ID
        return user

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"subscription_tier": "premium"})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)

        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def update_subscription_mirror(
        self,
        user_id: int,
        updates: dict,
        clear_trial_markers: bool = False,
    ) -> Optional[User]:
        """
        Write the denormalized subscription fields onto a user and commit.

        Missing users are ignored (the subscription may outlive its account).

        Args:
            user_id: Owning user's ID
            updates: Mirror columns to set
            clear_trial_markers: Also unset trial_started_at / trial_ends_at

        Returns:
            The updated User, or None if the user no longer exists
        """
        user = await self.get_user_by_id(user_id)
        if not user:
            return None

        changes = dict(updates)
        if clear_trial_markers:
            changes.update(TRIAL_MARKERS)

        for key, value in changes.items():
            setattr(user, key, value)
        await self.db.commit()
        return user
