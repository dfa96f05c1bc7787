"""Book definition for quire.

Run from this directory:
    quire validate
    quire build all markdown html
    quire release 0.1.0 -m "First draft"
"""

from quire import Book

book = Book(
    title="Untitled Book",
    author="Anonymous",
    source_dir="./manuscript",
    build_dir="./build",
)

# The full edition and a free sample. Every target needs manuscript/<target>.txt.
book.add_target("full")
book.add_target("sample", subtitle="Free Sample")

book.add_format("markdown", toc_depth=2)
book.add_format("html", toc_depth=2, number_sections=True)
book.add_format("epub", toc_depth=1)
book.add_format("pdf", page_size="a5", number_sections=True, margin="18mm")

book.add_channel("downloads", kind="directory", path="./public/downloads")
# book.add_channel("github", kind="github", repo="you/your-book")
# book.add_channel("store", kind="webhook", url="https://example.com/hooks/regenerate")
