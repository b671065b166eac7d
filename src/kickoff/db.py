from __future__ import annotations
from pathlib import Path

import duckdb
from kickoff.config import settings

SCHEMA_SQL = r"""
CREATE TABLE IF NOT EXISTS leagues (
  league_id BIGINT PRIMARY KEY,
  name VARCHAR,
  country VARCHAR,
  season INT
);

CREATE TABLE IF NOT EXISTS teams (
  team_id BIGINT PRIMARY KEY,
  name VARCHAR NOT NULL,
  code VARCHAR,
  country VARCHAR,
  logo VARCHAR
);

CREATE TABLE IF NOT EXISTS team_statistics (
  team_id BIGINT,
  league_id BIGINT,
  season INT,
  matches_played INT DEFAULT 0,
  wins INT DEFAULT 0,
  draws INT DEFAULT 0,
  losses INT DEFAULT 0,
  goals_for INT DEFAULT 0,
  goals_against INT DEFAULT 0,
  goals_for_avg DOUBLE DEFAULT 0,
  goals_against_avg DOUBLE DEFAULT 0,
  xg DOUBLE DEFAULT 0,
  xga DOUBLE DEFAULT 0,
  form VARCHAR DEFAULT '',
  win_percentage DOUBLE DEFAULT 0,
  draw_percentage DOUBLE DEFAULT 0,
  loss_percentage DOUBLE DEFAULT 0,
  goal_difference INT DEFAULT 0,
  most_used_formation VARCHAR,
  yellow_cards INT DEFAULT 0,
  red_cards INT DEFAULT 0,
  last_updated TIMESTAMP,
  PRIMARY KEY(team_id, league_id, season)
);

-- League-wide scoring rates per season, derived from finished fixtures
CREATE TABLE IF NOT EXISTS league_averages (
  league_id BIGINT,
  season INT,
  avg_goals_per_match DOUBLE,
  avg_home_goals DOUBLE,
  avg_away_goals DOUBLE,
  btts_percentage DOUBLE,
  fixtures INT,
  source VARCHAR,
  last_updated TIMESTAMP,
  PRIMARY KEY(league_id, season)
);

CREATE TABLE IF NOT EXISTS matches (
  match_id BIGINT PRIMARY KEY,
  league_id BIGINT,
  season INT,
  home_team BIGINT,
  away_team BIGINT,
  kickoff_at TIMESTAMP,
  status VARCHAR DEFAULT 'NS',
  home_goals INT,
  away_goals INT,
  corners_total INT
);

-- One row per match; the full record lives in payload (JSON)
CREATE TABLE IF NOT EXISTS match_predictions (
  match_id BIGINT PRIMARY KEY,
  is_placeholder BOOLEAN DEFAULT FALSE,
  placeholder_reason VARCHAR,
  status VARCHAR DEFAULT 'pending',
  is_processed BOOLEAN DEFAULT FALSE,
  processed_at TIMESTAMP,
  predicted_at TIMESTAMP,
  last_updated TIMESTAMP,
  payload VARCHAR NOT NULL
);

CREATE TABLE IF NOT EXISTS prediction_stats (
  id VARCHAR PRIMARY KEY,
  simulated_total BIGINT DEFAULT 0,
  won_total BIGINT DEFAULT 0,
  fields_considered VARCHAR,
  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
  updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS prediction_stats_fields (
  stats_id VARCHAR,
  field VARCHAR,
  simulated BIGINT DEFAULT 0,
  won BIGINT DEFAULT 0,
  PRIMARY KEY(stats_id, field)
);

CREATE SEQUENCE IF NOT EXISTS cron_executions_seq;

CREATE TABLE IF NOT EXISTS cron_executions (
  id BIGINT PRIMARY KEY DEFAULT nextval('cron_executions_seq'),
  cron_name VARCHAR NOT NULL,
  executed_at TIMESTAMP NOT NULL,
  executed_at_utc VARCHAR,
  executed_at_local VARCHAR,
  server_timezone VARCHAR,
  status VARCHAR NOT NULL,   -- started | success | failed
  duration_ms BIGINT,
  error VARCHAR,
  details VARCHAR
);

CREATE INDEX IF NOT EXISTS idx_cron_name_time ON cron_executions(cron_name, executed_at);
"""


def connect(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    path = db_path or settings().db_path
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    con = duckdb.connect(path)
    con.execute(SCHEMA_SQL)
    return con
