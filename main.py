import os

from config import load_settings
from errors import AudioPrintError
from fingerprint import AudioFingerprinter
from library import open_library
from logging_config import setup_logging
from models import SongMetadata

PAGE_SIZE = 20


def register_song(library, fingerprinter, file_path, title=None, artist=None, genre=None):
    """ Adds a full song to the library """
    title = title or os.path.splitext(os.path.basename(file_path))[0]
    print(f"Processing: {title}")

    # 1. Load and fingerprint
    samples, sample_rate = fingerprinter.load_audio(file_path)
    fingerprint = fingerprinter.generate_song_fingerprint(samples, sample_rate)

    # 2. Store in the library
    metadata = SongMetadata(
        title=title,
        artist=artist or "Unknown artist",
        genre=genre or None,
        duration=fingerprint.duration,
        sample_rate=fingerprint.sample_rate,
    )
    song = library.register_song(metadata, fingerprint.hashes, fingerprint.hash_count)
    print(f"Done! Stored as #{song.id} with {song.hash_count} hashes.")
    return song


def identify_song(library, fingerprinter, file_path, top=5):
    # 1. Fingerprint the sample
    samples, sample_rate = fingerprinter.load_audio(file_path)
    query = fingerprinter.generate_query_fingerprint(samples, sample_rate)

    # 2. Find matches
    results = library.identify(query.hashes)
    if not results:
        print("No matches found.")
        return results

    print(f"\n--- RESULT ({len(results)} matches) ---")
    for rank, result in enumerate(results[:top], start=1):
        song = result.song
        print(f"  {rank}. {song.title} by {song.artist} "
              f"(confidence: {result.confidence:.3f}, "
              f"{result.unique_matches}/{result.total_query_hashes} hashes)")
    return results


def list_songs(library, page):
    songs = library.list_songs(page, PAGE_SIZE)
    total = library.count_songs()
    print(f"\nPage {page} ({total} songs in library)")
    for song in songs:
        print(f"  #{song.id} {song.title} - {song.artist} ({song.duration:.1f}s)")
    if not songs:
        print("  (empty)")


def search_text(library, query):
    songs = library.search_by_text(query)
    if not songs:
        print("No songs found.")
    for song in songs:
        print(f"  #{song.id} {song.title} - {song.artist}")


# --- CLI Menu ---
if __name__ == "__main__":
    settings = load_settings()
    setup_logging("audioprint", settings.log_level)
    library = open_library(settings)
    fingerprinter = AudioFingerprinter()

    try:
        while True:
            print("\n1. Add Song to Library")
            print("2. Identify from File")
            print("3. List Songs")
            print("4. Search by Title/Artist/Genre")
            print("5. Exit")
            choice = input("Select: ").strip()

            try:
                if choice == '1':
                    path = input("Enter path to audio file: ").strip().strip('"')
                    title = input("Title (blank for file name): ").strip()
                    artist = input("Artist: ").strip()
                    genre = input("Genre (optional): ").strip()
                    register_song(library, fingerprinter, path, title, artist, genre)
                elif choice == '2':
                    path = input("Enter path to sample file: ").strip().strip('"')
                    identify_song(library, fingerprinter, path)
                elif choice == '3':
                    page = input("Page (default 0): ").strip()
                    list_songs(library, int(page) if page else 0)
                elif choice == '4':
                    search_text(library, input("Search: "))
                elif choice == '5':
                    break
            except (AudioPrintError, ValueError, FileNotFoundError) as e:
                print(f"Error: {e}")
    finally:
        library.close()
