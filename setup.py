"""
Video Saver Setup Script
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding='utf-8') if readme_path.exists() else ""

# Read requirements
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_path.exists():
    with open(requirements_path, 'r') as f:
        requirements = [
            line.strip() 
            for line in f 
            if line.strip() and not line.startswith('#')
        ]

setup(
    name="video-saver",
    version="0.1.0",
    author="Video Saver Project",
    description="Write frame streams to video files through OpenCV or FFmpeg",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=['video_saver', 'video_saver.*']),
    include_package_data=True,
    package_data={
        'video_saver': [
            'configs/*.yaml',
        ],
    },
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        'dev': [
            'pytest>=7.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'video-saver=video_saver.cli:main',
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Video",
    ],
    keywords="video, ffmpeg, opencv, frames, mp4",
)
