"""
Audio-reactive firework simulation.

Sound events launch a rocket toward a point just above the trigger
position; on arrival it bursts into particles whose count, speed, size,
lifetime and colors are driven by the event descriptor:

- Intensity: more, faster, bigger, longer-lived particles.
- Pitch range: speed multiplier and color palette.
- Sound type: snaps burst denser, whistles sparser, with their own palettes.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Tuple

import numpy as np

from chromaburst.core.classifier import SoundEventDescriptor
from chromaburst.core.level import map_range

Color = Tuple[int, int, int]

PITCH_PALETTES: dict[str, list[Color]] = {
    "low": [(139, 69, 19), (255, 0, 0), (255, 165, 0), (255, 255, 0)],
    "midLow": [(255, 165, 0), (255, 255, 0), (255, 255, 255), (144, 238, 144)],
    "midHigh": [(144, 238, 144), (0, 255, 0), (173, 216, 230), (0, 0, 255)],
    "high": [(0, 255, 255), (0, 0, 255), (128, 0, 128), (0, 0, 139)],
}
DEFAULT_PALETTE: list[Color] = [(255, 255, 255), (200, 200, 200), (150, 150, 150)]

SOUND_TYPE_PALETTES: dict[str, list[Color]] = {
    "snap": [(255, 255, 255), (220, 220, 255), (255, 240, 200)],
    "whistle": [(0, 255, 200), (120, 255, 255), (200, 255, 255)],
}

PITCH_SPEED = {"low": 0.7, "midLow": 0.9, "midHigh": 1.1, "high": 1.3}
SOUND_TYPE_DENSITY = {"snap": 1.5, "whistle": 0.7}


@dataclass
class FireworkConfig:
    """Configuration for FireworkEngine."""

    target_dx: Tuple[float, float] = (-50.0, 50.0)
    target_rise: Tuple[float, float] = (50.0, 150.0)
    approach: float = 0.1  # Fraction of remaining distance covered per tick
    trail_length: int = 10
    explode_distance: float = 20.0
    max_flight_ticks: int = 60
    max_age_ticks: int = 180
    min_particles: int = 30
    max_particles: int = 60
    particle_floor: int = 12
    particle_ceiling: int = 90
    gravity: float = 0.1


@dataclass
class Particle:
    """A single explosion spark."""

    x: float
    y: float
    vx: float
    vy: float
    life: int
    max_life: int
    size: float
    color: Color
    intensity: float = 0.0
    pitch_range: str = "low"
    alpha: float = 255.0

    def step(self, gravity: float):
        """Integrate one tick."""
        self.x += self.vx
        self.y += self.vy
        self.vy += gravity
        self.life -= 1
        self.alpha = max(0.0, map_range(self.life, 0, self.max_life, 0.0, 255.0))

    @property
    def dead(self) -> bool:
        return self.life <= 0


@dataclass
class Firework:
    """A rocket in flight (or its lingering burst)."""

    x: float
    y: float
    target_x: float
    target_y: float
    descriptor: SoundEventDescriptor
    trail: Deque[Tuple[float, float]] = field(default_factory=lambda: deque(maxlen=10))
    age: int = 0
    exploded: bool = False

    def distance_to_target(self) -> float:
        return math.hypot(self.target_x - self.x, self.target_y - self.y)


class FireworkEngine:
    """
    Spawns, animates and garbage-collects fireworks and particles.

    Purely tick-driven: nothing can fail, and everything expires by age.
    """

    def __init__(self, config: FireworkConfig | None = None, seed: int | None = None):
        self.cfg = config or FireworkConfig()
        self.rng = np.random.default_rng(seed)

        self.fireworks: List[Firework] = []
        self.particles: List[Particle] = []
        self.total_launched = 0
        self.total_exploded = 0

    def trigger_firework(
        self,
        origin: Tuple[float, float],
        descriptor: SoundEventDescriptor,
    ) -> Firework:
        """Launch a firework from origin toward a nearby point above it."""
        cfg = self.cfg
        x, y = origin
        firework = Firework(
            x=float(x),
            y=float(y),
            target_x=float(x + self.rng.uniform(*cfg.target_dx)),
            target_y=float(y - self.rng.uniform(*cfg.target_rise)),
            descriptor=descriptor,
            trail=deque(maxlen=cfg.trail_length),
        )
        self.fireworks.append(firework)
        self.total_launched += 1
        return firework

    def particle_count(self, descriptor: SoundEventDescriptor) -> int:
        """Number of particles an explosion of this descriptor spawns."""
        cfg = self.cfg
        intensity = float(np.clip(descriptor.intensity, 0.0, 1.0))
        base = map_range(intensity, 0, 1, cfg.min_particles, cfg.max_particles)
        base *= SOUND_TYPE_DENSITY.get(descriptor.sound_type, 1.0)
        return int(np.clip(round(base), cfg.particle_floor, cfg.particle_ceiling))

    def palette(self, descriptor: SoundEventDescriptor) -> list[Color]:
        if descriptor.sound_type in SOUND_TYPE_PALETTES:
            return SOUND_TYPE_PALETTES[descriptor.sound_type]
        return PITCH_PALETTES.get(descriptor.pitch_range, DEFAULT_PALETTE)

    def explode(self, firework: Firework) -> List[Particle]:
        """Burst a firework into particles at its current position."""
        descriptor = firework.descriptor
        intensity = float(np.clip(descriptor.intensity, 0.0, 1.0))
        pitch_range = descriptor.pitch_range

        colors = self.palette(descriptor)
        energy = map_range(intensity, 0, 1, 0.8, 2.0)
        speed_mult = energy * PITCH_SPEED.get(pitch_range, 1.0)
        life_scale = map_range(intensity, 0, 1, 1.0, 1.4)

        spawned = []
        for _ in range(self.particle_count(descriptor)):
            angle = self.rng.uniform(0, 2 * math.pi)
            speed = self.rng.uniform(1.5, 4.0) * speed_mult * energy

            # Higher pitches scatter more
            if pitch_range == "high":
                speed *= 1.1
                angle += self.rng.uniform(-0.3, 0.3)
            elif pitch_range == "low":
                speed *= 0.9
                angle += self.rng.uniform(-0.15, 0.15)

            life = max(1, int(round(self.rng.uniform(40, 70) * life_scale)))
            color = colors[int(self.rng.integers(len(colors)))]

            spawned.append(
                Particle(
                    x=firework.x,
                    y=firework.y,
                    vx=math.cos(angle) * speed,
                    vy=math.sin(angle) * speed,
                    life=life,
                    max_life=life,
                    size=self.rng.uniform(2.0, 4.0) * energy * energy,
                    color=color,
                    intensity=intensity,
                    pitch_range=pitch_range,
                )
            )

        firework.exploded = True
        self.total_exploded += 1
        self.particles.extend(spawned)
        return spawned

    def update(self):
        """Advance every firework and particle by one tick."""
        cfg = self.cfg

        survivors = []
        for fw in self.fireworks:
            fw.age += 1
            if not fw.exploded:
                fw.x += (fw.target_x - fw.x) * cfg.approach
                fw.y += (fw.target_y - fw.y) * cfg.approach
                fw.trail.append((fw.x, fw.y))

                # Age cutoff bounds flight time even if the approach never lands
                if fw.distance_to_target() < cfg.explode_distance or fw.age >= cfg.max_flight_ticks:
                    self.explode(fw)

            if not (fw.exploded and fw.age > cfg.max_age_ticks):
                survivors.append(fw)
        self.fireworks = survivors

        for p in self.particles:
            p.step(cfg.gravity)
        self.particles = [p for p in self.particles if not p.dead]

    def clear(self):
        self.fireworks = []
        self.particles = []
