"""Random user generation for populating development databases."""
import random
from datetime import date

from schemas.user import UserCreate

FIRST_NAMES = [
    "Ada", "Alan", "Barbara", "Claude", "Donald", "Edsger", "Frances", "Grace",
    "Hedy", "John", "Katherine", "Linus", "Margaret", "Niklaus", "Radia", "Tim",
]
MIDDLE_NAMES = ["Ann", "Lee", "Marie", "James", "Rose", "Scott", "Lynn", "Elliot"]
LAST_NAMES = [
    "Allen", "Backus", "Cerf", "Dijkstra", "Hamilton", "Hopper", "Johnson", "Kay",
    "Knuth", "Lamarr", "Liskov", "Perlman", "Ritchie", "Shannon", "Turing", "Wirth",
]
# (city, state, zip code)
LOCATIONS = [
    ("Austin", "TX", "78701"),
    ("Boston", "MA", "02101"),
    ("Chicago", "IL", "60601"),
    ("Denver", "CO", "80201"),
    ("Portland", "OR", "97201"),
    ("San Diego", "CA", "92101"),
    ("Seattle", "WA", "98101"),
    ("Raleigh", "NC", "27601"),
]
OCCUPATIONS = [
    "Software Developer", "Data Analyst", "Product Manager", "Site Reliability Engineer",
    "UX Designer", "Technical Writer", "Security Engineer", "Database Administrator",
]
COMPANIES = [
    "Northwind Labs", "Blue Harbor", "Quantum Forge", "Cedar Analytics",
    "Lighthouse Systems", "Orbit Works",
]
STREETS = ["Main St", "Oak Ave", "Maple Dr", "Pine Rd", "Cedar Ln", "Elm St"]


def _slug(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


def random_dob(rng: random.Random, today: date | None = None) -> date:
    """A date of birth for someone between 18 and 65 years old."""
    today = today or date.today()
    year = rng.randint(today.year - 65, today.year - 18)
    # Day capped at 28 so every month is valid
    return date(year, rng.randint(1, 12), rng.randint(1, 28))


def generate_user(rng: random.Random, index: int) -> UserCreate:
    """
    Build one plausible user.

    `index` is folded into the email so a single batch never repeats an address.
    """
    first = rng.choice(FIRST_NAMES)
    last = rng.choice(LAST_NAMES)
    middle = rng.choice(MIDDLE_NAMES) if rng.random() < 0.7 else None
    city, state, zip_code = rng.choice(LOCATIONS)
    company = rng.choice(COMPANIES)
    handle = ".".join(_slug(part) for part in (first, middle, last) if part)

    return UserCreate(
        first_name=first,
        middle_name=middle,
        last_name=last,
        email=f"{handle}.{index}@{_slug(company)}.com",
        phone=f"+1{rng.randint(2_000_000_000, 9_999_999_999)}",
        dob=random_dob(rng),
        address=f"{rng.randint(1, 9999)} {rng.choice(STREETS)}",
        city=city,
        state=state,
        zip_code=zip_code,
        country="USA",
        occupation=rng.choice(OCCUPATIONS),
        company=company,
        website=f"https://{_slug(first)}{_slug(last)}.dev",
        bio=f"{rng.choice(OCCUPATIONS)} based in {city}.",
        is_active=rng.random() < 0.9,
    )


def generate_users(count: int, seed: int | None = None) -> list[UserCreate]:
    """Generate `count` random users; pass `seed` for a reproducible batch."""
    rng = random.Random(seed)
    # Offset indexes by a random base so repeated seeding rarely collides on email
    base = rng.randint(0, 1_000_000)
    return [generate_user(rng, base + i) for i in range(count)]
