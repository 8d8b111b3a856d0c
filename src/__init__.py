"""Document Intelligence OCR System.

An end-to-end document processing pipeline combining Tesseract OCR,
OpenCV preprocessing, and transformer-based extraction to extract
structured data from invoices, receipts, and forms.
"""
