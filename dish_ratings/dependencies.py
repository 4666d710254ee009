"""FastAPI dependencies resolving the components stored on app.state."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from dish_ratings.bootstrap import Services
from dish_ratings.services.leaderboard import LeaderboardReader
from dish_ratings.services.review_writer import ReviewWriter


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_writer(request: Request) -> ReviewWriter:
    return get_services(request).writer


def get_reader(request: Request) -> LeaderboardReader:
    return get_services(request).reader
