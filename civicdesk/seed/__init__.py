# Seed data for local development and demos
