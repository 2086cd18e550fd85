"""Project memory — notes, inheritance links and extraction merge.

Layout:
    ~/.config/clancy/
    ├── clancy.toml                    # Optional configuration
    └── projects/
        └── <name>/
            ├── project.md             # Metadata as YAML frontmatter (parent, status, stats)
            ├── notes/
            │   ├── architecture.md    # append: conventions and structure
            │   ├── decisions.md       # append: choices with rationale
            │   ├── failures.md        # append: known pitfalls
            │   └── plan.md            # replace: current plan
            ├── tasks/
            │   └── 001-add-auth.json  # Task logs (numbering never resets)
            └── .versions/             # Timestamped note backups (10 per category)
"""
