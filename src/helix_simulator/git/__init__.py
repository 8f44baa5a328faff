"""Local git repository emulation."""

from .emulator import EmulatorState, LocalRepoEmulator, LocalRepoMapping
from .server import GIT_LOCAL_HOST, GIT_LOCAL_OWNER, GitServer, LocalGitServer, find_work_tree

__all__ = [
    'EmulatorState',
    'GIT_LOCAL_HOST',
    'GIT_LOCAL_OWNER',
    'GitServer',
    'LocalGitServer',
    'LocalRepoEmulator',
    'LocalRepoMapping',
    'find_work_tree',
]
