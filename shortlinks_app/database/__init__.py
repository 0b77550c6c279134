from .connection import Base, SessionLocal, build_engine, engine, init_db

__all__ = ["Base", "SessionLocal", "build_engine", "engine", "init_db"]
