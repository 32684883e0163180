# AssemblySim — Flexible Assembly Shop Floor
# All time units are SECONDS of simulated time; distances are metres.

# ── Simulation horizon ────────────────────────────────────────────────────────
SHIFT_HOURS   = 8
SIM_DURATION  = SHIFT_HOURS * 3_600   # 28 800 s — one shift

# ── Factory metadata ──────────────────────────────────────────────────────────
FACTORY_NAME     = "Nordwerk Assembly Hall 3"
FACTORY_LOCATION = "Karlsruhe, Germany"

# ── Products ──────────────────────────────────────────────────────────────────
# Each operation: processing / setup / follow-up seconds, whether the station
# needs a material delivery before it can start, and the operations that must
# be complete first.  Operation order is the row order of the dependency matrix.
PRODUCTS = {
    "CHASSIS-A": {
        "name":        "Modular chassis, full option",
        "demand_share": 0.45,
        "color":       "#2E86AB",
        "operations": [
            {"name": "base",    "processing": 60,  "setup": 15, "follow_up": 5,
             "material": True,  "predecessors": []},
            {"name": "frame",   "processing": 90,  "setup": 20, "follow_up": 5,
             "material": False, "predecessors": ["base"]},
            {"name": "wiring",  "processing": 120, "setup": 10, "follow_up": 10,
             "material": True,  "predecessors": ["base"]},
            {"name": "panel",   "processing": 80,  "setup": 15, "follow_up": 5,
             "material": False, "predecessors": ["frame"]},
            {"name": "test",    "processing": 45,  "setup": 5,  "follow_up": 5,
             "material": False, "predecessors": ["panel", "wiring"]},
        ],
    },
    "CHASSIS-B": {
        "name":        "Compact chassis, drive unit",
        "demand_share": 0.35,
        "color":       "#A23B72",
        "operations": [
            {"name": "base",    "processing": 60,  "setup": 15, "follow_up": 5,
             "material": True,  "predecessors": []},
            {"name": "motor",   "processing": 150, "setup": 25, "follow_up": 10,
             "material": True,  "predecessors": ["base"]},
            {"name": "cover",   "processing": 70,  "setup": 10, "follow_up": 5,
             "material": False, "predecessors": ["motor"]},
            {"name": "test",    "processing": 45,  "setup": 5,  "follow_up": 5,
             "material": False, "predecessors": ["cover"]},
        ],
    },
    "CHASSIS-C": {
        "name":        "Side-loader chassis",
        "demand_share": 0.20,
        "color":       "#F18F01",
        "operations": [
            {"name": "base",    "processing": 60,  "setup": 15, "follow_up": 5,
             "material": True,  "predecessors": []},
            {"name": "left",    "processing": 85,  "setup": 10, "follow_up": 5,
             "material": False, "predecessors": ["base"]},
            {"name": "right",   "processing": 85,  "setup": 10, "follow_up": 5,
             "material": True,  "predecessors": ["base"]},
            {"name": "test",    "processing": 45,  "setup": 5,  "follow_up": 5,
             "material": False, "predecessors": ["left", "right"]},
        ],
    },
}

# ── Layout ────────────────────────────────────────────────────────────────────
# Station origin is where the job docks; capabilities are operation names.
# mtbf_s / mttr_s only matter in scenarios with breakdowns enabled.
STATIONS = {
    "ST-1": {"origin": (10.0, 10.0), "capabilities": ["base", "frame", "motor"],
             "mtbf_s": 9_000,  "mttr_s": 600},
    "ST-2": {"origin": (30.0, 10.0), "capabilities": ["base", "wiring", "left", "right"],
             "mtbf_s": 12_000, "mttr_s": 450},
    "ST-3": {"origin": (50.0, 10.0), "capabilities": ["frame", "panel", "cover", "motor"],
             "mtbf_s": 10_000, "mttr_s": 900},
    "ST-4": {"origin": (30.0, 35.0), "capabilities": ["wiring", "panel", "left", "right", "cover"],
             "mtbf_s": 15_000, "mttr_s": 400},
    "ST-5": {"origin": (55.0, 35.0), "capabilities": ["test", "cover", "panel"],
             "mtbf_s": 20_000, "mttr_s": 300},
    "ST-6": {"origin": (10.0, 35.0), "capabilities": ["test", "base", "wiring"],
             "mtbf_s": 18_000, "mttr_s": 300},
}

# unload_delay_s : time for the warehouse to process an arriving AGV
# load_delay_s   : time to load one material kit onto an AGV
WAREHOUSES = {
    "WH-North": {"position": (25.0, 0.0),  "unload_delay_s": 30, "load_delay_s": 20},
    "WH-East":  {"position": (65.0, 20.0), "unload_delay_s": 30, "load_delay_s": 25},
}

AGVS = {
    "AGV 1": {"position": (0.0, 0.0)},
    "AGV 2": {"position": (0.0, 5.0)},
    "AGV 3": {"position": (0.0, 10.0)},
}

SOURCE_POSITION = (0.0, 22.0)    # where released jobs enter the hall
SINK_POSITION   = (70.0, 45.0)   # dispatch area for finished jobs

TRANSPORT_SPEED_M_S = 1.2        # jobs on carriers and AGVs share one speed

# ── Order release ─────────────────────────────────────────────────────────────
RELEASE = {
    "jobs":                  30,
    "mean_interarrival_s":  240,
    "due_offset_min_s":   2_400,
    "due_offset_max_s":   5_400,
    "rush_fraction":       0.20,
    "rush_due_factor":     0.60,   # rush jobs get 60 % of the normal slack
}

# ── Dispatch strategies ───────────────────────────────────────────────────────
# Weights of the station scoring (pA..pD, pG) and queue admission (pE, pF, pH).
STRATEGIES = {
    "balanced": {
        "label":           "Balanced",
        "transport":       1.0,   # pA
        "processing":      1.0,   # pB
        "station_busy":    1.0,   # pC
        "queued_work":     1.0,   # pD
        "due_date":        1.0,   # pE
        "setup":           1.0,   # pF
        "material_supply": 1.0,   # pG
        "material_wait":   1.0,   # pH
    },
    "short_paths": {
        "label":           "Short paths",
        "transport":       3.0,
        "processing":      0.5,
        "station_busy":    1.0,
        "queued_work":     1.0,
        "due_date":        1.0,
        "setup":           0.5,
        "material_supply": 1.0,
        "material_wait":   1.0,
    },
    "due_date_first": {
        "label":           "Due date first",
        "transport":       1.0,
        "processing":      1.0,
        "station_busy":    1.5,
        "queued_work":     1.5,
        "due_date":        3.0,
        "setup":           0.5,
        "material_supply": 1.0,
        "material_wait":   2.0,
    },
}

# ── Scenario definitions ──────────────────────────────────────────────────────
SCENARIOS = {
    "no_material": {
        "label":       "No material flow",
        "description": "Stations are stocked; AGVs idle, only jobs move",
        "policy":      "none",
        "breakdowns":  False,
    },
    "reactive": {
        "label":       "Reactive supply",
        "description": "AGV is called once the job has chosen its next station",
        "policy":      "reactive",
        "breakdowns":  False,
    },
    "controlled": {
        "label":       "Controlled supply",
        "description": "Supply time is scored and the AGV reserved while planning",
        "policy":      "controlled",
        "breakdowns":  False,
    },
    "predictive": {
        "label":       "Predictive supply",
        "description": "Controlled supply plus material-need forecasts per job",
        "policy":      "predictive",
        "breakdowns":  False,
    },
    "breakdowns": {
        "label":       "Predictive + breakdowns",
        "description": "Predictive supply with random station failures",
        "policy":      "predictive",
        "breakdowns":  True,
    },
}

# ── Robust batch scheduler ────────────────────────────────────────────────────
# N_AGV : fleet size      R : blend between earliest (0) and latest (1) estimate
# P     : batch size      B : beam width
SCHEDULER = {
    "n_vehicles": 5,
    "r":          1.0,
    "p":          7,
    "b":          20,
}

# Demo table: job → ((earliest, latest) duration estimate,
#                     (earliest deadline, probability), (probable deadline, probability))
DEMO_DEADLINES = {
    "job1":  ((2, 5),   (7, 0.58),  (9, 0.79)),
    "job2":  ((1, 4),   (5, 0.32),  (10, 0.50)),
    "job3":  ((3, 6),   (9, 0.74),  (13, 0.94)),
    "job4":  ((5, 8),   (12, 0.19), (17, 0.79)),
    "job5":  ((4, 11),  (15, 0.49), (16, 0.73)),
    "job6":  ((4, 9),   (16, 0.85), (20, 0.88)),
    "job7":  ((6, 10),  (14, 0.66), (16, 0.85)),
    "job8":  ((8, 12),  (12, 0.21), (13, 0.51)),
    "job9":  ((4, 6),   (8, 0.47),  (9, 0.74)),
    "job10": ((7, 14),  (17, 0.93), (18, 0.95)),
    "job11": ((6, 12),  (17, 0.62), (21, 0.97)),
    "job12": ((4, 14),  (18, 0.38), (21, 0.98)),
    "job13": ((7, 11),  (6, 0.57),  (11, 0.66)),
    "job14": ((10, 17), (19, 0.46), (24, 0.87)),
    "job15": ((2, 7),   (10, 0.81), (14, 0.87)),
    "job16": ((5, 11),  (21, 0.29), (23, 0.89)),
    "job17": ((3, 13),  (8, 0.77),  (9, 0.95)),
    "job18": ((8, 15),  (20, 0.34), (22, 0.76)),
    "job19": ((1, 9),   (7, 0.92),  (12, 0.99)),
    "job20": ((9, 16),  (11, 0.51), (14, 0.87)),
}
