from __future__ import annotations

TONE_MODES: tuple[str, ...] = ("tactical", "mythic", "whimsical", "brutal", "minimalist")

TOWN_SYLLABLE_A: tuple[str, ...] = (
    "Honey",
    "Berry",
    "Brook",
    "Vale",
    "Glow",
    "Sun",
    "Moon",
    "Clover",
    "Sparkle",
    "Willow",
    "Lantern",
    "Apple",
    "Moss",
    "Puddle",
    "Rainbow",
)

TOWN_SYLLABLE_B: tuple[str, ...] = (
    "haven",
    "ford",
    "glen",
    "hollow",
    "crossing",
    "rest",
    "meadow",
    "bay",
    "field",
    "crest",
)

BOARD_OPENERS: tuple[str, ...] = (
    "The contract is live.",
    "Someone is watching.",
    "Lanternlight hides teeth.",
    "The square smells like trouble.",
    "That contract won't wait.",
    "The road won't forgive hesitation.",
    "You feel eyes on you.",
    "The healer is overwhelmed.",
    "Time is thinning.",
)

NARRATION_VERBS: tuple[str, ...] = (
    "strike",
    "smash",
    "crack",
    "detonate",
    "burst",
    "snap",
    "slice",
    "slam",
    "flash",
    "shatter",
    "ignite",
    "freeze",
    "zap",
    "crash",
    "whirl",
    "boom",
    "bonk",
)

TONE_LINES: dict[str, tuple[str, ...]] = {
    "tactical": (
        "The supply line is open. Move now or lose leverage.",
        "Angles are clean for one turn. Use them.",
        "You have tempo. Spend it before they reset.",
    ),
    "mythic": (
        "The sky answers in lightning.",
        "Old names wake when steel meets oath.",
        "The ground remembers who stood here.",
    ),
    "whimsical": (
        "Someone is about to regret standing there.",
        "Luck trips over your boots and keeps running.",
        "That plan is ridiculous. It might work.",
    ),
    "brutal": (
        "It hits hard. Something cracks.",
        "Claws rake, armor sings, blood answers.",
        "One clean blow can end this.",
    ),
    "minimalist": (
        "Claws. Blood. Stone.",
        "Step. Strike. Breathe.",
        "No noise. Just impact.",
    ),
}

COMBAT_TONE_PREFIX: dict[str, str] = {
    "tactical": "Tactical read:",
    "mythic": "Mythic pulse:",
    "whimsical": "Wildly,",
    "brutal": "Hard.",
    "minimalist": "",
}

BANNED_PLAYER_PHRASES: tuple[str, ...] = (
    "command:unknown",
    "opening move",
    "board answers with hard state",
    "committed pressure lines",
    "commit one decisive move",
    "resolved non-player turn steps",
    "campaign_intro_opening",
)

COMBAT_FALLBACK_LINE = "Steel and spellfire trade space. Pick the next decisive move."

RECOVERY_CLOSERS: dict[str, tuple[str, ...]] = {
    "town": (
        "Merchants lower their voices when you pass, and every stall seems to hold one more secret than it admits.",
        "A courier jogs by with a sealed letter, glancing back as if the streets themselves might follow.",
        "The notice board has fresh ink on it, and at least one name there was not there this morning.",
        "Somewhere behind the market a bell rings twice, the signal locals use when the watch is stretched thin.",
        "Your companions trade a look that says the next choice will decide who owes whom a favor.",
        "Smoke from the forge drifts over the square, carrying the smell of hot iron and unfinished business.",
    ),
    "travel": (
        "The road bends toward a ridge where the wind carries the sound of something large moving through brush.",
        "Wheel ruts split at a fallen marker, one path well traveled and the other deliberately hidden.",
        "Clouds stack on the horizon, and the light is turning the color of old brass.",
        "A campfire ring sits cold beside the trail, the ashes still holding a faint warmth.",
        "Your pack straps creak as the party settles into a pace that can hold until dusk.",
        "Birds go quiet ahead, which usually means the road is about to become interesting.",
    ),
    "dungeon": (
        "Water drips somewhere in the dark, counting out time with patient and indifferent rhythm.",
        "The corridor ahead narrows, the stone scored by claws that were not made by anything small.",
        "Your torchlight catches a carved sigil that flickers faintly when you look straight at it.",
        "Air moves against your face from a passage that should be sealed, carrying the smell of dust and iron.",
        "Old bones lie arranged along the wall as if someone wanted visitors to take a careful count.",
        "Far below, something heavy shifts, and the floor answers with a low and grinding complaint.",
    ),
    "combat": (
        "Dust hangs in the air between you and the enemy line, and nobody wants to blink first.",
        "The ground is torn where the last exchange landed, leaving uneven footing on both sides.",
        "Your breathing settles into the rhythm of the fight, every muscle waiting for the next opening.",
        "Enemy eyes track your weapon hand, measuring reach and weighing the cost of stepping in.",
        "Allies shift into position behind you, ready to cover whichever angle you choose to press.",
        "The pressure of the fight builds, and one well chosen move could swing the whole encounter.",
    ),
}

GENERIC_CLOSERS: tuple[str, ...] = (
    "The moment holds, and the world waits to see what you will do with it.",
    "Every path in front of you has a cost, and every cost buys something different.",
    "You take stock of your gear, your allies, and the ground beneath your boots.",
    "Choose the next move with intent, because the story remembers what you commit to.",
)

COMPANION_CHECKIN_TEMPLATES: tuple[str, ...] = (
    "{name}: Keep your guard up, this place is changing around us.",
    "{name}: I can scout ahead if you want a cleaner angle.",
    "{name}: We have momentum. Let's not waste it.",
    "{name}: Something about this job is off. Stay sharp.",
)

COMPANION_URGENCY: tuple[str, ...] = ("low", "medium", "high")
