# ====== Theme & Palette ======
# One entry per card template. Colors are shared by the 2D preview, the 3D
# textures and the PNG export so all three stay visually consistent.

THEMES = {
    "kosma": {
        "title": "Kosma",
        "bg": (5, 5, 5),
        "fg": (255, 255, 255),
        "sub": (136, 136, 136),
        "muted": (204, 204, 204),
        "signature": (224, 224, 224),
        "glyph_pattern": (51, 51, 51),
        "glyph_fill": ((204, 204, 204), 0.8),
        "back_glow": ((255, 255, 255, 0.06), 0.6),
        "swatches": ["#050505", "#1F1F1F", "#888888", "#E0E0E0"],
        "accent": (242, 140, 40),
        "dark": True,
        "family": "sans",
    },
    "techno": {
        "title": "Techno",
        "bg": (234, 234, 230),
        "fg": (17, 17, 17),
        "sub": (85, 85, 85),
        "muted": (51, 51, 51),
        "signature": (17, 17, 17),
        "rule": (204, 204, 204),
        "glyph_pattern": (200, 200, 194),
        "glyph_fill": ((17, 17, 17), 0.12),
        "back_glow": ((0, 0, 0, 0.05), 0.6),
        "accent": (242, 74, 41),
        "knob_angles": [-45, 0, 45],
        "corner_labels": ["ENDLESS", "TYPE-01"],
        "dark": False,
        "family": "mono",
    },
}

# Relief passes for the 3D textures: (dx, dy, color, alpha). Shadows first,
# main layer at (0, 0), highlights last.
EMBOSS = {
    "kosma": {
        "header": [
            (12, 12, "#000000", 0.8),
            (8, 8, "#1a1a1a", 0.6),
            (4, 4, "#333333", 0.5),
            (0, 0, "#666666", 1.0),
            (-4, -4, "#888888", 0.7),
            (-8, -8, "#aaaaaa", 0.5),
        ],
        "name": [
            (16, 16, "#000000", 0.9),
            (12, 12, "#0d0d0d", 0.7),
            (8, 8, "#1a1a1a", 0.6),
            (4, 4, "#404040", 0.4),
            (0, 0, "#CCCCCC", 1.0),
            (-4, -4, "#e6e6e6", 0.8),
            (-8, -8, "#ffffff", 0.7),
            (-12, -12, "#ffffff", 0.4),
        ],
        "headline": [
            (20, 20, "#000000", 0.9),
            (14, 14, "#0d0d0d", 0.7),
            (8, 8, "#1a1a1a", 0.6),
            (4, 4, "#404040", 0.4),
            (0, 0, "#CCCCCC", 1.0),
            (-4, -4, "#e6e6e6", 0.8),
            (-8, -8, "#ffffff", 0.7),
            (-12, -12, "#ffffff", 0.4),
        ],
    },
    "techno": {
        "header": [
            (8, 8, "#b8b8b2", 0.7),
            (4, 4, "#cfcfca", 0.6),
            (0, 0, "#555555", 1.0),
            (-4, -4, "#ffffff", 0.6),
        ],
        "name": [
            (12, 12, "#a9a9a3", 0.8),
            (8, 8, "#bdbdb7", 0.6),
            (4, 4, "#d2d2cc", 0.5),
            (0, 0, "#111111", 1.0),
            (-4, -4, "#ffffff", 0.7),
            (-8, -8, "#ffffff", 0.4),
        ],
        "headline": [
            (14, 14, "#a9a9a3", 0.8),
            (8, 8, "#bdbdb7", 0.6),
            (4, 4, "#d2d2cc", 0.5),
            (0, 0, "#111111", 1.0),
            (-4, -4, "#ffffff", 0.7),
            (-8, -8, "#ffffff", 0.4),
        ],
    },
}


def theme(style: str) -> dict:
    return THEMES.get(style, THEMES["kosma"])


def emboss(style: str, role: str):
    return EMBOSS.get(style, EMBOSS["kosma"])[role]
