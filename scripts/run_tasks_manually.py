# scripts/run_tasks_manually.py
import asyncio
import logging
import sys
import os

# Запуск из корня репозитория: python scripts/run_tasks_manually.py [task_name ...]
sys.path.append(os.getcwd())

from tonescrow.tasks_registry import TASKS


async def main(task_names: list[str]):
    """
    Поочередно запускает фоновые задачи из реестра.
    Без аргументов запускает все задачи.
    """
    names = task_names or list(TASKS.keys())
    unknown = [name for name in names if name not in TASKS]
    if unknown:
        print(f"Unknown tasks: {', '.join(unknown)}. Available: {', '.join(TASKS.keys())}")
        return

    print("--- Manual Task Runner ---")
    for index, name in enumerate(names, start=1):
        task = TASKS[name]
        print(f"\n[{index}/{len(names)}] Running: {name}...")
        if task["is_async"]:
            result = await task["function"]()
        else:
            # Синхронные задачи выполняются в отдельном потоке, не блокируя event loop
            result = await asyncio.to_thread(task["function"])
        print(f"Done. Result: {result}")

    print("\n--- All tasks completed! ---")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stdout, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        asyncio.run(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nScript interrupted by user.")
