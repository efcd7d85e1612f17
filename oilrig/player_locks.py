import logging
from asyncio import Lock
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class PlayerLockManager:
    def __init__(self):
        self.locks = {}  # player_idごとにLockを管理
        self.users = {}  # player_idごとにLockを保持・待機しているコルーチン数
        self.lock = Lock()  # locksとusersへのアクセスのみを保護

    async def get_lock(self, player_id: UUID) -> Lock:
        """Get the Lock of the specified player_id and count the caller as one of its users

        Args:
            player_id (UUID): ID to identify the player

        Returns:
            Lock: Lock serializing every mutation of this player
        """
        async with self.lock:
            if player_id not in self.locks:
                self.locks[player_id] = Lock()
                self.users[player_id] = 0
            self.users[player_id] += 1
            return self.locks[player_id]

    async def cleanup(self, player_id: UUID):
        """Release the caller's use of the Lock; the last user deletes it

        Args:
            player_id (UUID): ID to identify the player
        """
        async with self.lock:
            self.users[player_id] -= 1
            if self.users[player_id] == 0:
                del self.locks[player_id]
                del self.users[player_id]
                logging.debug(f"Released lock of player {player_id}")

    @asynccontextmanager
    async def hold(self, player_id: UUID) -> AsyncIterator[None]:
        """Hold the player's lock for the duration of one logical operation."""
        player_lock = await self.get_lock(player_id)
        try:
            async with player_lock:
                yield
        finally:
            await self.cleanup(player_id)
