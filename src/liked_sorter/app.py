from __future__ import annotations

import argparse

from liked_sorter.config import Settings, configure_logging, env_int, load_local_env_file
from liked_sorter.workflows import InsightsReport, SortReport, playlist_insights, sort_liked_songs


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sort Spotify liked songs into playlists")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sort_parser = subparsers.add_parser("sort", help="Classify recent liked songs and add them to playlists")
    sort_parser.add_argument(
        "--limit",
        type=int,
        default=env_int("LIKED_LIMIT", 20),
        help="Number of recent liked songs to look at (defaults to LIKED_LIMIT env or 20, max 50)",
    )
    sort_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Classify and record decisions without adding tracks to playlists",
    )

    insights_parser = subparsers.add_parser("insights", help="Summarize and cluster a playlist")
    insights_parser.add_argument("playlist_id", help="Spotify playlist id")
    insights_parser.add_argument("--top", type=int, default=15, help="Number of top artists to show")
    insights_parser.add_argument("--k", type=int, default=5, help="Requested number of clusters")

    return parser.parse_args(argv)


def format_sort_report(report: SortReport) -> list[str]:
    mode = "dry run" if report.dry_run else "applied"
    lines = [
        f"Liked songs: {report.liked_count} ({report.already_processed} already processed, "
        f"{report.to_process} to process, {mode})",
    ]
    for d in report.decisions:
        artists = ", ".join(d.track.artists)
        lines.append(
            f"  {d.track.name} - {artists} -> {d.decision.label} "
            f"[{d.decision.rule}, {d.decision.confidence}%]"
        )
    for label, count in report.summary.items():
        lines.append(f"{label}: {count}")
    for add in report.adds:
        lines.append(f"Added {add['added']} tracks to {add['playlist_name']}")
    if report.note:
        lines.append(f"Missing playlists: {', '.join(report.missing_playlists)}")
        lines.append(report.note)
    return lines


def _format_value(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.3f}"


def format_insights_report(report: InsightsReport) -> list[str]:
    lines = [f"Playlist {report.playlist_id}: {report.count} tracks"]
    if report.top_artists:
        lines.append("Top artists:")
        lines.extend(f"  {a['key']} ({a['count']})" for a in report.top_artists)
    lines.append("Audio summary:")
    lines.extend(f"  {name}: {_format_value(value)}" for name, value in report.audio_summary.items())

    result = report.clusters
    if not result.performed:
        lines.append(f"Clustering skipped: {result.note}")
        return lines

    lines.append(f"Clusters (k={result.effective_k}):")
    for cluster in result.clusters:
        averages = ", ".join(
            f"{name}={_format_value(cluster.averages[name])}" for name in ("energy", "danceability", "valence", "tempo")
        )
        lines.append(f"  #{cluster.cluster_id}: {cluster.size} tracks ({averages})")
        for sample in cluster.samples:
            lines.append(f"    {sample.name} - {', '.join(sample.artists)}")
    return lines


def main(argv: list[str] | None = None) -> None:
    load_local_env_file()
    args = parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    from liked_sorter.spotify_service import SpotifyService

    service = SpotifyService(settings)

    if args.command == "sort":
        from liked_sorter.store import ProcessedTrackStore

        store = ProcessedTrackStore(settings.database_url)
        report = sort_liked_songs(
            service,
            already_processed=store.already_processed,
            record=store.record,
            limit=args.limit,
            dry_run=args.dry_run,
        )
        lines = format_sort_report(report)
    else:
        lines = format_insights_report(playlist_insights(service, args.playlist_id, top=args.top, k=args.k))

    for line in lines:
        print(line)


if __name__ == "__main__":
    main()
