from fastapi import Request

from database.db import Database


def get_database(request: Request) -> Database:
    return request.app.state.db
