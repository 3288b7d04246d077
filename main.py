import asyncio

from cafe.commands import bot, job_manager


async def main():
    await job_manager.init_redis()
    scheduler_task = asyncio.create_task(job_manager.schedule_jobs())
    try:
        await bot.start()
    finally:
        scheduler_task.cancel()


if __name__ == "__main__":
    asyncio.run(main())
