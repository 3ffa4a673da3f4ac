"""Built-in presets seeded into an empty collection."""

from __future__ import annotations

from .models import PromptData

STYLE_PRESETS: list[tuple[str, PromptData]] = [
    (
        "Product Mockup",
        PromptData(
            subject="A modern, sleek product bottle",
            action="placed on a clean surface",
            environment="in a brightly lit studio setting with a seamless white background",
            style="photorealistic product mockup, high resolution, 4K, commercial quality",
            lighting="soft, even studio lighting, consistent shadows, high contrast",
            camera="eye-level shot, 85mm lens, sharp focus on the product",
        ),
    ),
    (
        "Cinematic Portrait",
        PromptData(
            subject="A mysterious person in a trench coat",
            action="standing under a single streetlamp",
            environment="on a rain-slicked city street at night",
            style="cinematic, film noir, dramatic, moody",
            lighting="strong key light from the streetlamp, deep shadows, atmospheric haze",
            camera="low-angle shot, 35mm lens, anamorphic style",
        ),
    ),
    (
        "Fantasy Landscape",
        PromptData(
            subject="A colossal, ancient tree with glowing runes",
            action="standing in the middle of a misty valley",
            environment="surrounded by floating islands and waterfalls under a twin-moon sky",
            style="epic fantasy art, digital painting, highly detailed, vibrant colors",
            lighting="ethereal, magical glow from the runes and moons, volumetric lighting",
            camera="ultra-wide angle shot, panoramic view, establishing shot",
        ),
    ),
]
