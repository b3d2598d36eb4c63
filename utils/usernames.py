import random

ADJECTIVES = [
    "Red", "Blue", "Green", "Happy", "Clever", "Silly", "Brave", "Fast", "Gentle", "Fierce",
    "Bright", "Quiet", "Playful", "Vivid", "Mellow", "Witty", "Cheerful", "Curious", "Calm",
    "Friendly", "Grumpy", "Whimsical", "Zesty", "Sunny", "Chill", "Cozy", "Daring", "Quirky", "Epic",
]
NOUNS = [
    "Panda", "Falcon", "Otter", "Badger", "Walrus", "Koala", "Narwhal", "Raccoon", "Penguin", "Lynx",
    "Comet", "Pickle", "Waffle", "Taco", "Cactus", "Pebble", "Nebula", "Pretzel", "Muffin", "Goblin",
]


def random_username() -> str:
    """Adjective + Noun + number, e.g. `WittyOtter4821`."""
    return f"{random.choice(ADJECTIVES)}{random.choice(NOUNS)}{random.randint(1000, 9999)}"


async def generate_unique_username(db, attempts: int = 10) -> str:
    """Pick a random username that is not taken yet."""
    for _ in range(attempts):
        candidate = random_username()
        if not await db.users.find_one({"username": candidate}):
            return candidate
    # Widen the number space after repeated collisions
    return f"{random_username()}{random.randint(0, 99999)}"
